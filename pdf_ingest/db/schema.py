from typing import Optional
from pydantic import BaseModel

class PaperInfo(BaseModel):
    paper_id: str
    title: Optional[str] = None
    authors: str = ""                 # comma-joined
    published: Optional[str] = None   # as reported by the feed
    summary: Optional[str] = None
    pdf_url: Optional[str] = None

    @property
    def file_name(self) -> str:
        return self.paper_id.replace("/", "_") + ".pdf"
