from cloudproxy.cli import cli

cli()
