import datetime as dt
from pathlib import Path
from sqlalchemy import Column, DateTime, Integer, String, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker


Base = declarative_base()

DOC_PROCESSING = "PROCESSING"
DOC_COMPLETED = "COMPLETED"
DOC_FAILED = "FAILED"

def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)

# 每个文档一行，按文件名去重
class ProcessedDocumentORM(Base):
    __tablename__ = "processed_documents"
    id = Column(Integer, primary_key=True)
    file_name = Column(String, unique=True, nullable=False)
    document_id = Column(String, index=True)
    status = Column(String, nullable=False, default=DOC_PROCESSING)  # PROCESSING|COMPLETED|FAILED
    total_pages = Column(Integer, nullable=True)
    total_chunks = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    title = Column(String(2000), nullable=True)
    author = Column(String(2000), nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    error_message = Column(String(2000), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

def make_session_factory(db_url: str):
    url = make_url(db_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": 30}
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, future=True, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
