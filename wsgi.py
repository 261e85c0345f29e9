# wsgi.py (at repo root)
from agency_console import create_app

app = create_app()
