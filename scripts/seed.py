import sys

from config import configure_logging, get_settings
from database import SessionLocal, init_db
from services.etl import import_goodreads_csv
from services.library import create_library, utcnow

path = sys.argv[1] if len(sys.argv) > 1 else "data/goodreads_library_export.csv"
user_id = sys.argv[2] if len(sys.argv) > 2 else "me"

settings = get_settings()
configure_logging(settings)
init_db()

with open(path, "rb") as f:
    db = SessionLocal()
    try:
        library = create_library(db, settings=settings)
        print(import_goodreads_csv(f.read(), library, user_id=user_id))
        stats = library.reading_stats(user_id, utcnow())
        if stats.ok:
            print(stats.value.to_dict())
        else:
            print(stats.error.user_message)
    finally:
        db.close()
