"""
Authentication and credential-lifecycle services.

Dependency order: DBStorage + PasswordHasher -> TokenIssuer -> RevocationService,
SingleUseTokenService, TwoFactorService -> OAuthLinker -> AuthOrchestrator.
Only AuthOrchestrator is used by the HTTP layer.
"""
