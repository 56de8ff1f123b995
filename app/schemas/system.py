from pydantic import BaseModel

class SystemStats(BaseModel):
    users: int
    circles: int
    items: int
    embedded_items: int
