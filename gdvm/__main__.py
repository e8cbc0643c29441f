from gdvm.gdvm import cli

# Without an explicit name, usage text would show '__main__.py'
cli(prog_name="gdvm")
