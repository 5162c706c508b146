__version__ = '1.0.0'

from openidrp.identifier import Identifier
from openidrp.realm import Realm

__all__ = ['Identifier', 'Realm']
