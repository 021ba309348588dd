"""Flask application factory for the DubForge HTTP API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from dubforge import ffutil
from dubforge.manifest import StretchConfig
from dubforge.models import Capabilities


def create_app(
    work_dir: Path | None = None,
    capabilities: Capabilities | None = None,
    stretch_config: StretchConfig | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="dubforge_"))
    app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024 * 1024  # 2 GB
    # Probed once per process, shared read-only by all requests.
    app.config["CAPABILITIES"] = capabilities or ffutil.detect_capabilities()
    app.config["STRETCH_CONFIG"] = stretch_config or StretchConfig()

    from dubforge.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
