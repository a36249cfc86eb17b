from rest_framework import authentication, exceptions

from .store import users


class QueryParamUserAuthentication(authentication.BaseAuthentication):
    """
    Resolve the caller from the `userId` query parameter.

    The storefront client identifies itself as `?userId=<id>`. A missing
    parameter or `userId=0` means a guest (no credentials); an id that
    does not resolve to an active account is rejected with 401.
    """
    param = 'userId'

    def authenticate(self, request):
        raw = request.query_params.get(self.param)
        if raw in (None, '', '0'):
            return None

        try:
            user_id = int(raw)
        except (TypeError, ValueError):
            raise exceptions.AuthenticationFailed('Not authenticated')

        user = users.get_user(user_id)
        if user is None or not user.is_active:
            raise exceptions.AuthenticationFailed('Not authenticated')
        return (user, None)
