from myamori.cli.commands import app

app()
