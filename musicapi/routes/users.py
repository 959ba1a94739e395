from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..config import get_settings
from ..crud import (
    create_admin,
    add_user,
    list_users,
    authenticate_user,
    logout_user,
    logout_everywhere,
    update_password,
    delete_user,
    get_user_by_id,
)
from ..errors import NotFoundError
from ..gate import Identity, get_current_user, require_roles
from ..models.users import Role
from ..schemas.users import (
    SignupIn,
    AddUserIn,
    LoginIn,
    UpdatePasswordIn,
    TokenOut,
    UserOut,
    UserPage,
    IdentityOut,
    RevokedOut,
    Envelope,
)

router = APIRouter()

admin_only = require_roles(Role.ADMIN)


def _ok(message: str, data=None, status: int = 200) -> JSONResponse:
    body = Envelope(status=status, error=False, message=message, data=data)
    return JSONResponse(status_code=status, content=body.model_dump(mode='json'))


@router.post('/signup', response_model=Envelope, status_code=201)
async def signup(payload: SignupIn):
    user = await create_admin(payload.email, payload.password)
    return _ok('User created successfully', UserOut.model_validate(user).model_dump(mode='json'), 201)


@router.post('/add-user', response_model=Envelope, status_code=201)
async def add(payload: AddUserIn, current_user: Identity = Depends(admin_only)):
    user = await add_user(payload.email, payload.password, payload.role)
    return _ok('User created successfully', UserOut.model_validate(user).model_dump(mode='json'), 201)


@router.get('/', response_model=Envelope)
async def get_all_users(
    limit: Optional[int] = Query(None, ge=1, le=100),
    offset: int = Query(0, ge=0),
    role: Optional[Role] = None,
    current_user: Identity = Depends(admin_only),
):
    count, rows = await list_users(limit or get_settings().page_limit, offset, role)
    page = UserPage(count=count, rows=[UserOut.model_validate(u) for u in rows])
    return _ok('Users retrieved successfully.', page.model_dump(mode='json'))


@router.post('/login', response_model=Envelope)
async def login(payload: LoginIn):
    token = await authenticate_user(payload.email, payload.password)
    return _ok('Login successful.', TokenOut(token=token).model_dump())


@router.get('/me', response_model=Envelope)
async def me(current_user: Identity = Depends(get_current_user)):
    return _ok('User retrieved successfully.', IdentityOut(**current_user.as_dict()).model_dump())


@router.delete('/logout', response_model=Envelope)
async def logout(current_user: Identity = Depends(get_current_user)):
    await logout_user(current_user.user_id, current_user.token)
    return _ok('User logged out successfully.')


@router.delete('/logout-all', response_model=Envelope)
async def logout_all(current_user: Identity = Depends(get_current_user)):
    revoked = await logout_everywhere(current_user.user_id)
    return _ok('All sessions revoked.', RevokedOut(revoked=revoked).model_dump())


@router.put('/update-password', response_model=Envelope)
async def change_password(payload: UpdatePasswordIn, current_user: Identity = Depends(get_current_user)):
    await update_password(current_user.user_id, payload.old_password, payload.new_password)
    return _ok('Password updated successfully.')


@router.delete('/{user_id}/sessions', response_model=Envelope)
async def revoke_user_sessions(user_id: int, current_user: Identity = Depends(admin_only)):
    if not await get_user_by_id(user_id):
        raise NotFoundError('User not found.')
    revoked = await logout_everywhere(user_id)
    return _ok('All sessions revoked.', RevokedOut(revoked=revoked).model_dump())


@router.delete('/{user_id}', response_model=Envelope)
async def remove_user(user_id: int, current_user: Identity = Depends(admin_only)):
    await delete_user(user_id)
    return _ok('User deleted successfully.')
