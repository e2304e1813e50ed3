from .datastore import DataStore, DatasetRegistry, DatasetSpec

__version__ = "0.3.0"
__author__ = "audit-vault"
