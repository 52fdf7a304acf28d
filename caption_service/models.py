from uuid import uuid4
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

def new_session_id() -> str:
    """Generates a new unique session ID."""
    return str(uuid4())

def new_job_id() -> str:
    """Generates a new unique caption job ID."""
    return str(uuid4())

class CamelModel(BaseModel):
    """Serializes as camelCase on the wire, accepts either spelling on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
