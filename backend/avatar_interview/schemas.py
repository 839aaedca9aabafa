from pydantic import BaseModel, ConfigDict, Field


class StartInterviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: str = Field(alias="fullName", min_length=1)
    email: str = Field(min_length=3)
    booking_code: str = Field(alias="bookingCode", min_length=1)


class StartInterviewResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)


class StartAccepted(BaseModel):
    status: str
    phase: str
