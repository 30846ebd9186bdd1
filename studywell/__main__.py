from studywell.main import run

run()
