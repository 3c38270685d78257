from pydantic import BaseModel


class NexusKeyResult(BaseModel):
    valid: bool
    username: str = ""
    is_premium: bool = False
    error: str = ""


class NexusRequirement(BaseModel):
    mod_id: int
    mod_name: str = ""
