from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import atexit
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS', [])

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created. engine.io pings every
    # PING_INTERVAL_SEC and drops clients silent for CONNECTION_TIMEOUT_SEC.
    ping_interval = float(flask_app.config.get('PING_INTERVAL_SEC', 30))
    socketio.init_app(
        flask_app,
        cors_allowed_origins=allowed_origins,
        ping_interval=ping_interval,
        ping_timeout=max(1.0, float(flask_app.config.get('CONNECTION_TIMEOUT_SEC', 60)) - ping_interval),
    )

    # Game runtime: one timer registry, one broadcast channel, one engine per app
    from trivia.broadcast import BroadcastChannel, SocketIOTransport
    from trivia.services.game import GameEngine, TimerRegistry

    namespace = flask_app.config.get('SOCKETIO_NAMESPACE', '/ws')
    channel = BroadcastChannel(SocketIOTransport(socketio, namespace), flask_app.logger)
    timers = TimerRegistry(
        flask_app.logger,
        start_task=socketio.start_background_task,
        sleep=socketio.sleep,
        autostart=flask_app.config.get('TIMERS_AUTOSTART', True),
    )
    engine = GameEngine(
        flask_app, timers, channel,
        sleep=socketio.sleep,
        start_task=socketio.start_background_task,
    )
    flask_app.extensions['trivia'] = engine

    # Import and register blueprints here
    from trivia.main import main
    flask_app.register_blueprint(main)

    from trivia.api.question_packs import question_packs
    flask_app.register_blueprint(question_packs, url_prefix='/api/question-packs')

    from trivia.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from trivia.api.players import players
    flask_app.register_blueprint(players, url_prefix='/api/players')

    from trivia.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace)

    atexit.register(engine.shutdown)

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from trivia.seed import seed_question_packs
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            packs = seed_question_packs()
            print(f'Database has been reset and seeded with {len(packs)} question packs!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
