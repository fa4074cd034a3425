from pydantic import BaseModel


class MotionControlRequest(BaseModel):
    image: str
    video: str
    character_orientation: str = "image"
    keep_original_sound: bool = True
