from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import declarative_base

OrmBase = declarative_base()

# SQLite only auto-increments INTEGER PRIMARY KEY columns
RowId = BigInteger().with_variant(Integer, "sqlite")
