from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Union

from cryptojwt.utils import importer
from idpyoidc.configure import Base
from idpyoidc.util import instantiate

from openidrp.defaults import DEFAULT_RP_CONFIG


class RPConfiguration(Base):
    """Relying party configuration"""

    def __init__(self,
                 conf: Dict,
                 base_path: Optional[str] = '',
                 file_attributes: Optional[List[str]] = None,
                 domain: Optional[str] = "",
                 port: Optional[int] = 0,
                 dir_attributes: Optional[List[str]] = None,
                 ):
        Base.__init__(self, conf=conf, base_path=base_path, file_attributes=file_attributes,
                      dir_attributes=dir_attributes, domain=domain, port=port)

        for param, default in DEFAULT_RP_CONFIG.items():
            setattr(self, param, conf.get(param, default))


def load_class(spec: Union[str, type, Any]) -> Any:
    """A class given as a dotted path or as itself."""
    if isinstance(spec, str):
        return importer(spec)
    return spec


def build_component(spec: Optional[Union[dict, str, Any]], **kwargs) -> Any:
    """
    Instantiate a component described as {'class': ..., 'kwargs': {...}}.
    Anything that isn't such a description is assumed to already be a
    component and is returned as is.
    """
    if spec is None:
        return None
    if isinstance(spec, dict) and "class" in spec:
        _kwargs = spec.get("kwargs", {}).copy()
        _kwargs.update(kwargs)
        return instantiate(spec["class"], **_kwargs)
    return spec
