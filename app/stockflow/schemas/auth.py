from pydantic import BaseModel, EmailStr, model_validator


class LoginRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {"email": "jane@example.com", "password": "OldPass123"},
                {"username_or_email": "jane-username", "password": "OldPass123"},
            ]
        }
    }

    email: EmailStr | None = None
    username_or_email: str | None = None
    password: str

    @model_validator(mode="after")
    def ensure_identifier(self):
        if not self.email and not self.username_or_email:
            raise ValueError("email or username_or_email is required")
        return self


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    trace_id: str | None = None
