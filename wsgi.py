# wsgi.py
# gunicorn wsgi:app
# local development: python wsgi.py
import os

from iptvhub import create_app

app = create_app()

if __name__ == '__main__':
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 5000)))
