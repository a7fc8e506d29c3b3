from manufacturing import create_app

app = create_app()
