from diskbin.cli import app

app()
