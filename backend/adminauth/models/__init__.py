from adminauth.models.admin import AdministratorAccount, AdminRepository, InMemoryAdminRepository

__all__ = [
    "AdministratorAccount",
    "AdminRepository",
    "InMemoryAdminRepository",
]
