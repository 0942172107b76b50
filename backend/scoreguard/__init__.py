from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
limiter = Limiter(key_func=get_remote_address)
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    # Only forwarding headers set by our own proxies count toward remote_addr
    hops = flask_app.config.get('TRUSTED_PROXY_HOPS', 0)
    if hops:
        flask_app.wsgi_app = ProxyFix(flask_app.wsgi_app, x_for=hops, x_proto=hops)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    limiter.init_app(flask_app)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from scoreguard.errors import AuthenticationRequired, register_error_handlers
    register_error_handlers(flask_app)

    # Process-wide protocol objects: built once here, handed to routes via app.extensions
    from scoreguard.services.sessions import build_session_services
    build_session_services(flask_app)

    from scoreguard.main import main
    flask_app.register_blueprint(main)

    from scoreguard.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from scoreguard.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from scoreguard.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(AuthenticationRequired().to_dict()), AuthenticationRequired.status

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from scoreguard.models import GameTitle, GameConfig
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            for u in ['testuser1', 'testuser2', 'testuser3']:
                user = User(username=u)
                user.set_password('password')
                db.session.add(user)

            game = GameTitle(slug='memory-match', name='Memory Match', max_score=5000)
            db.session.add(game)
            db.session.flush()
            db.session.add(GameConfig(game_id=game.id, max_score_per_min=600))
            db.session.add(GameTitle(slug='tiles-run', name='Tiles Run', max_score=100000))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
