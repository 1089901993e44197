from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine


def make_engine(db_file: str) -> Engine:
    return create_engine(f"sqlite:///{db_file}", echo=False, connect_args={"check_same_thread": False})

def init_db(engine: Engine):
    # Import models so SQLModel.metadata includes them
    import splitchain.models.stored_value
    SQLModel.metadata.create_all(engine)
