#!/usr/bin/env python3
"""
Create all tables in DATABASE_URL.
Run from the project root: python -m scripts.init_db
"""
from creditgate.db.init_db import create_all
from creditgate.db.session import engine


def main():
    create_all(engine)
    print("Tables created.")


if __name__ == "__main__":
    main()
