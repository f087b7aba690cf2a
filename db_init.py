# db_init.py
from pathlib import Path

from config import Config
from models import Base, make_engine, make_session_factory
from storage import INVOICES_KEY, SETTINGS_KEY, KeyValueStore


def main():
    # Ensure the SQLite folder exists for local dev
    uri = Config.SQLALCHEMY_DATABASE_URI
    if uri.startswith("sqlite:///"):
        Path(uri[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    # Ensure exports/ exists for PDFs
    Path(Config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)

    engine = make_engine(uri, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)

    # Seed empty documents so the first read sees the right shape
    kv = KeyValueStore(make_session_factory(engine))
    seeded = []
    for key, empty in ((INVOICES_KEY, []), (SETTINGS_KEY, {})):
        if kv.read(key) is None:
            kv.write(key, empty)
            seeded.append(key)

    print("✅ Key-value store initialized.")
    print(f"DB: {uri}")
    print(f"Seeded keys: {', '.join(seeded) if seeded else 'none'}")
    print(f"Exports dir: {Config.EXPORTS_DIR}")


if __name__ == "__main__":
    main()
