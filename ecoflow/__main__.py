from ecoflow.main import app

app(prog_name="ecoflow")
