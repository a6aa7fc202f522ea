import os
import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy

if os.getenv("FLASK_DEBUG") == "1":
    from dotenv import load_dotenv
    load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

base_dir = os.path.abspath(os.path.dirname(__file__))
app = Flask(__name__,
            template_folder=os.path.join(base_dir, "templates"))

app.secret_key = os.getenv("SECRET_KEY")
app.json.sort_keys = False

# spotify auth cookies are only marked secure outside local development
if os.getenv("FLASK_DEBUG") == "1":
    app.config["AUTH_COOKIE_SECURE"] = False
else:
    app.config["AUTH_COOKIE_SECURE"] = True

os.makedirs(app.instance_path, exist_ok=True)
db_path = os.path.join(app.instance_path, "site.db")
app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv("DATABASE_URL", f"sqlite:///{db_path}")

db = SQLAlchemy(app)

from . import models
with app.app_context():
    db.create_all()

from .errors import register_error_handlers
register_error_handlers(app)

from .routes import routes
from .song_requests import song_requests
from .playlists import playlists
from .transitions import transitions
app.register_blueprint(routes)
app.register_blueprint(song_requests)
app.register_blueprint(playlists)
app.register_blueprint(transitions)
