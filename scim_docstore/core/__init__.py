"""Core Business Logic Module

This module provides the provisioning logic of the connector, independent of
the HTTP framework (Flask) and of the storage driver.

Module Structure:
    - errors.py               : Typed failures (MappingTypeError, NotFoundError, ...)
    - mapper.py               : SCIM attribute ↔ document field mapping
    - query.py                : Filter parsing and where-predicate translation
    - membership.py           : Group membership consistency
    - provisioning_service.py : The eight resource operations

Usage Pattern:
    Import explicitly when needed:
        from scim_docstore.core.mapper import AttributeMapper
        from scim_docstore.core.provisioning_service import ProvisioningService
        from scim_docstore.store import MemoryStore

        service = ProvisioningService(MemoryStore(), AttributeMapper.default())
        service.create_user({"userName": "alice"})
"""
