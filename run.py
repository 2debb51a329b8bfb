# run.py
from artisan_market.config import Config
from artisan_market.main import app

if __name__ == "__main__":
    # Schedulers start inside artisan_market.main; the reloader would start them twice
    app.run(
        debug=Config.DEBUG,
        host=Config.FLASK_RUN_HOST,
        port=Config.FLASK_RUN_PORT,
        use_reloader=False,
    )
