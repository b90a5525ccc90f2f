from pharmapickup.worker.main import run

run()
