import logging

from flask import Flask, request, jsonify

from derivbots import registry
from derivbots.billing import load_gate
from derivbots.config import BotConfiguration, DEFAULT_CONFIG, Settings
from derivbots.errors import (
    AlreadyRunningError, ConfigurationError, NotEntitledError, UnknownStrategyError,
)
from derivbots.journal import TradeJournal
from derivbots.logger import setup_logger
from derivbots.runner import BotRunner
from derivbots.store import KeyValueStore

log = logging.getLogger("derivbots.app")


def create_app(settings=None, runner=None, store=None, gate=None, journal=None):
    settings = settings or Settings.from_env()
    store = store or KeyValueStore(settings.store_path)
    gate = gate or load_gate(settings.entitlements_path)
    if journal is None and settings.journal_path:
        journal = TradeJournal(settings.journal_path)
    runner = runner or BotRunner(settings, store, gate, journal)

    app = Flask(__name__)
    app.config["RUNNER"] = runner

    def bot_entry(profile):
        return {
            "id": profile.bot_id,
            "name": profile.name,
            "symbol": profile.symbol,
            "description": profile.description,
            "tier": gate.get_tier(profile.bot_id).to_dict(),
        }

    @app.route("/")
    @app.route("/api/bots")
    def list_bots():
        return jsonify([bot_entry(registry.get_profile(b)) for b in registry.available()])

    @app.route("/api/stats")
    def get_stats():
        return jsonify(runner.status())

    @app.route("/api/params/<bot_id>", methods=["GET"])
    def get_params(bot_id):
        registry.get_profile(bot_id)
        return jsonify(store.load_config(bot_id, DEFAULT_CONFIG))

    @app.route("/api/params/<bot_id>", methods=["POST"])
    def save_params(bot_id):
        registry.get_profile(bot_id)
        config = BotConfiguration.from_mapping(request.get_json(silent=True) or {})
        store.save_config(bot_id, config.to_dict())
        return jsonify({"status": "ok", "config": config.to_dict()})

    @app.route("/api/start", methods=["POST"])
    def start_bot():
        data = request.get_json(silent=True) or {}
        bot_id = data.get("bot", "")
        registry.get_profile(bot_id)
        raw = data.get("config") or store.load_config(bot_id, DEFAULT_CONFIG)
        config = BotConfiguration.from_mapping(raw)
        runner.start(bot_id, config, data.get("user"))
        return jsonify({"status": "started", "bot": bot_id})

    @app.route("/api/stop", methods=["POST"])
    def stop_bot():
        stopped = runner.stop()
        return jsonify({"status": "stopped" if stopped else "idle"})

    @app.route("/api/journal")
    def get_journal():
        if journal is None:
            return jsonify({"trades": 0, "wins": 0, "losses": 0, "profit": 0.0})
        return jsonify(journal.summary())

    @app.errorhandler(UnknownStrategyError)
    def unknown_bot(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(NotEntitledError)
    def not_entitled(e):
        return jsonify({"error": str(e)}), 403

    @app.errorhandler(ConfigurationError)
    def bad_config(e):
        return jsonify({"error": str(e), "field": e.field}), 400

    @app.errorhandler(AlreadyRunningError)
    def already_running(e):
        return jsonify({"error": str(e)}), 409

    return app


if __name__ == "__main__":
    settings = Settings.from_env()
    setup_logger("derivbots", settings.log_level)
    app = create_app(settings)
    if app.config["RUNNER"].resume():
        log.info("resumed previous run")
    app.run(host="0.0.0.0", port=settings.port)
