"""
Identity provider client: access token -> identity claims via OpenID userinfo.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from core.errors import IdentityError

logger = logging.getLogger(__name__)

GOOGLE_USERINFO_URL = 'https://www.googleapis.com/oauth2/v3/userinfo'


@dataclass
class IdentityClaims:
    subject_id: str
    display_name: str = ''
    email: str = ''
    picture_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'subjectId': self.subject_id,
            'displayName': self.display_name,
            'email': self.email,
            'pictureUrl': self.picture_url,
        }


class IdentityClient:
    def __init__(self, userinfo_url: str = GOOGLE_USERINFO_URL, timeout: float = 10.0, session: Any = None):
        self.userinfo_url = userinfo_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_claims(self, access_token: str) -> IdentityClaims:
        """GET userinfo với Bearer token; lỗi mạng hoặc token sai -> IdentityError."""
        if not access_token:
            raise IdentityError('Missing access token.')
        try:
            response = self.session.get(
                self.userinfo_url,
                headers={'Authorization': f'Bearer {access_token}'},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error('Không thể kết nối identity provider: %s', exc)
            raise IdentityError('The identity provider is unreachable.') from exc

        if response.status_code != 200:
            logger.warning('Identity provider từ chối token (HTTP %s)', response.status_code)
            raise IdentityError(f'The identity provider rejected the token (HTTP {response.status_code}).')
        try:
            info = response.json()
        except ValueError as exc:
            raise IdentityError('The identity provider returned an invalid response.') from exc

        subject = info.get('sub')
        if not subject:
            raise IdentityError('The identity provider did not return a subject id.')
        return IdentityClaims(
            subject_id=str(subject),
            display_name=info.get('name') or '',
            email=(info.get('email') or '').lower(),
            picture_url=info.get('picture'),
        )
