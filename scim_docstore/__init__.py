"""SCIM provisioning connector for document stores.

To use the Flask app:
    from scim_docstore.flask_app import create_app

To use the provisioning core without HTTP:
    from scim_docstore.core.provisioning_service import ProvisioningService
"""
# Note: flask_app is not imported here so the core can be used without Flask
