# clear the stored emotion history
import argparse
import logging

from emotion_log.log_store import STORAGE_KEY, EmotionLogStore


def clear_emotion_log(db_path, key=STORAGE_KEY):
    store = EmotionLogStore(db_path, key=key)
    try:
        removed = len(store.entries)
        store.clear()
    finally:
        store.close()
    return removed


def main(argv=None):
    ap = argparse.ArgumentParser(description="Delete every stored emotion log entry.")
    ap.add_argument("--db-path", default="emotion_log/emotion_log.db")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    removed = clear_emotion_log(args.db_path)
    print(f"Emotion history cleared ({removed} entries).")


if __name__ == "__main__":
    main()
