"""Flask application factory for the ClipTrim web UI."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from cliptrim.engine import EngineHandle, get_engine
from cliptrim.manifest import EngineConfig, PipelineConfig
from cliptrim.pipeline import ExtractionPipeline


def create_app(
    work_dir: Path | None = None,
    engine: EngineHandle | None = None,
    pipeline_config: PipelineConfig | None = None,
    engine_config: EngineConfig | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="cliptrim_web_"))
    app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024 * 1024  # 2 GB, held in memory
    app.config["ENGINE_CONFIG"] = engine_config or EngineConfig()

    engine = engine or get_engine(app.config["ENGINE_CONFIG"])
    app.config["PIPELINE"] = ExtractionPipeline(engine, config=pipeline_config)
    # Load while the user is still picking a file; runs wait for it if needed.
    engine.load_in_background()

    from cliptrim.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
