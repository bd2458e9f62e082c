from buildops import create_app

app = create_app()
