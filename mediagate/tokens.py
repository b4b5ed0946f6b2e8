import logging

from fastapi import APIRouter, Depends

from mediagate import models, schemas
from mediagate.auth import get_current_admin
from mediagate.deps import get_token_service
from mediagate.errors import AuthRequiredError, ScopeMismatchError
from mediagate.token_service import TokenService
from mediagate.utils.storage import FileKind

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/generate-token")
def generate_token(
    payload: schemas.TokenRequest,
    tokens: TokenService = Depends(get_token_service),
):
    issued = tokens.issue(payload.name, payload.email, payload.file_id, payload.message)
    return issued.to_dict()


@router.post("/verify-folder-token")
def verify_folder_token(
    payload: schemas.FolderTokenCheck,
    tokens: TokenService = Depends(get_token_service),
):
    if not payload.token:
        raise AuthRequiredError("Token required")
    verified = tokens.verify(payload.token, payload.file_id)
    if verified.file_type != FileKind.FOLDER.value:
        raise ScopeMismatchError("This token is not valid for a folder")
    return {"valid": True, "tokenData": verified.to_dict()}


@router.get("/token-info/{token}")
def token_info(token: str, tokens: TokenService = Depends(get_token_service)):
    return tokens.describe(token)


@router.get("/token-for-file/{file_id:path}")
def token_for_file(
    file_id: str,
    tokens: TokenService = Depends(get_token_service),
    admin: models.Admin = Depends(get_current_admin),
):
    return tokens.first_for_file(file_id)


@router.get("/tokens-for-file/{file_id:path}")
def tokens_for_file(
    file_id: str,
    tokens: TokenService = Depends(get_token_service),
    admin: models.Admin = Depends(get_current_admin),
):
    return tokens.list_for_file(file_id)


@router.delete("/revoke-token/{file_id:path}")
def revoke_token(
    file_id: str,
    tokens: TokenService = Depends(get_token_service),
    admin: models.Admin = Depends(get_current_admin),
):
    revoked = tokens.revoke_for_file(file_id)
    logger.info("Admin %s revoked tokens for %s", admin.email, file_id)
    return {"success": True, "revoked": revoked}
