from pydantic import BaseModel


class ApiModel(BaseModel):
    """Body model that accepts either camelCase aliases or field names."""

    class Config:
        from_attributes = True
        populate_by_name = True


class MessageResponse(BaseModel):
    message: str
