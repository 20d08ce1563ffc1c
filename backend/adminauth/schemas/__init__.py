from adminauth.schemas.auth import (
    CurrentAdminResponse,
    ErrorResponse,
    InitiateLoginResponse,
    LoginRequest,
    OtpRequest,
    ReloadKeysResponse,
    TokenResponse,
)
