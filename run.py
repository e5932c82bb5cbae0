"""
Entry point for the Notify application.

This script creates and runs the Flask application using the application factory pattern.
"""

import os

from notify import create_app
from notify.config.settings import config

# Get configuration from environment or default to development
config_name = os.getenv("FLASK_ENV", "development")
app = create_app(config[config_name])

if __name__ == "__main__":
    print("Starting Notify")
    print(f"Environment: {config_name}")
    print(f"Entity store: {app.config['STORE_BACKEND']}")
    if app.config["STORE_BACKEND"] == "postgres":
        print(f"Database: {app.config['DB_NAME']} on {app.config['DB_HOST']}:{app.config['DB_PORT']}")  # noqa: E231
    app_host = app.config["APP_HOST"]
    app_port = app.config["APP_PORT"]
    print(f"Server: http://{app_host}:{app_port}")  # noqa: E231

    # One meeting sweeper per process, so no reloader child
    app.run(debug=app.config["DEBUG"], host=app_host, port=app_port, use_reloader=False)
