"""Protocol implementations of :class:`~ssoconnect.sso.base.SsoConnector`.

* :mod:`ssoconnect.plugins.openid` -- OpenID Connect authorization code flow.
"""
