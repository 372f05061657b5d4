"""vSphere Automation REST API client.

Covers the endpoints the deployment needs: datacenter and image depot
lookups, tagging, storage policies, Supervisor enablement, Supervisor
Services and vSphere Namespaces.
"""

import base64
import logging
from typing import Any, Optional

import requests
import urllib3

# Suppress SSL warnings for self-signed certs
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

NAMESPACE_MGMT = '/api/vcenter/namespace-management'


class ApiError(Exception):
    """vCenter rejected a REST call (status 0 means no response)."""

    def __init__(self, method: str, path: str, status: int, message: str):
        self.method = method
        self.path = path
        self.status = status
        self.message = message
        super().__init__(f"{method} {path} failed ({status or 'no response'}): {message}")


def _error_message(resp: requests.Response) -> str:
    """Extract the vCenter error message from an error response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason
    if isinstance(body, dict):
        messages = body.get('messages') or []
        texts = [m.get('default_message', '') for m in messages if isinstance(m, dict)]
        if any(texts):
            return '; '.join(t for t in texts if t)
        if body.get('error_type'):
            return str(body['error_type'])
    return str(body)[:200]


def encode_content(text: str) -> str:
    """Base64-encode YAML content the way the services API expects it."""
    return base64.b64encode(text.encode('utf-8')).decode('ascii')


class RestClient:
    """Session-authenticated client for https://<server>/api."""

    def __init__(self, server: str, username: str, password: str,
                 verify_ssl: bool = False, timeout: int = 30):
        self.base_url = f"https://{server}"
        self.username = username
        self._password = password
        self.timeout = timeout
        self.session = requests.Session()
        self.session.verify = verify_ssl
        self._logged_in = False

    def login(self) -> None:
        """Create an API session (POST /api/session)."""
        path = '/api/session'
        try:
            resp = self.session.post(
                f"{self.base_url}{path}",
                auth=(self.username, self._password),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise ApiError('POST', path, 0, str(e)) from e
        if resp.status_code not in (200, 201):
            raise ApiError('POST', path, resp.status_code, _error_message(resp))
        self.session.headers['vmware-api-session-id'] = resp.json()
        self._logged_in = True
        logger.debug(f"REST session created for {self.username}")

    def logout(self) -> None:
        """Delete the API session. Errors are logged, not raised."""
        if not self._logged_in:
            return
        try:
            self.session.delete(f"{self.base_url}/api/session", timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.debug(f"REST logout failed: {e}")
        self.session.headers.pop('vmware-api-session-id', None)
        self._logged_in = False

    def request(self, method: str, path: str, params: Optional[dict] = None,
                json: Any = None, allow_404: bool = False) -> Any:
        """Send a request and return the decoded JSON body.

        Returns None for empty bodies, and for 404 when allow_404 is set.

        Raises:
            ApiError: On connection failure or any other 4xx/5xx status
        """
        if not self._logged_in:
            self.login()
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise ApiError(method, path, 0, str(e)) from e

        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code >= 400:
            raise ApiError(method, path, resp.status_code, _error_message(resp))
        if not resp.content:
            return None
        return resp.json()

    def get(self, path: str, params: Optional[dict] = None) -> Any:
        return self.request('GET', path, params=params)

    def get_optional(self, path: str, params: Optional[dict] = None) -> Any:
        """GET that returns None when the object does not exist."""
        return self.request('GET', path, params=params, allow_404=True)

    def post(self, path: str, json: Any = None, params: Optional[dict] = None) -> Any:
        return self.request('POST', path, params=params, json=json)

    # -------------------------------------------------------------------------
    # Inventory and image depot
    # -------------------------------------------------------------------------

    def find_datacenter(self, name: str) -> Optional[str]:
        """Return the datacenter MoRef id, or None."""
        items = self.get('/api/vcenter/datacenter', params={'names': name}) or []
        return items[0]['datacenter'] if items else None

    def list_base_images(self) -> list[str]:
        """Versions of the ESX base images available in the depot."""
        items = self.get('/api/esx/settings/depot-content/base-images') or []
        return [item.get('version', '') for item in items]

    def find_storage_policy(self, name: str) -> Optional[str]:
        """Return the storage policy id for a policy name, or None."""
        for item in self.get('/api/vcenter/storage/policies') or []:
            if item.get('name') == name:
                return item.get('policy')
        return None

    # -------------------------------------------------------------------------
    # Tagging
    # -------------------------------------------------------------------------

    def find_tag_category(self, name: str) -> Optional[str]:
        for category_id in self.get('/api/cis/tagging/category') or []:
            info = self.get(f'/api/cis/tagging/category/{category_id}')
            if info and info.get('name') == name:
                return category_id
        return None

    def create_tag_category(self, name: str, associable_types: list[str]) -> str:
        return self.post('/api/cis/tagging/category', json={
            'name': name,
            'description': 'Created by supervisor-driver',
            'cardinality': 'SINGLE',
            'associable_types': associable_types,
        })

    def find_tag(self, category_id: str, name: str) -> Optional[str]:
        tag_ids = self.post(
            '/api/cis/tagging/tag',
            params={'action': 'list-tags-for-category'},
            json={'category_id': category_id}
        ) or []
        for tag_id in tag_ids:
            info = self.get(f'/api/cis/tagging/tag/{tag_id}')
            if info and info.get('name') == name:
                return tag_id
        return None

    def create_tag(self, category_id: str, name: str) -> str:
        return self.post('/api/cis/tagging/tag', json={
            'name': name,
            'description': 'Created by supervisor-driver',
            'category_id': category_id,
        })

    def attach_tag(self, tag_id: str, object_type: str, object_id: str) -> bool:
        """Attach a tag to an object. Returns False if it was already attached."""
        attached = self.post(
            f'/api/cis/tagging/tag-association/{tag_id}',
            params={'action': 'list-attached-objects'}
        ) or []
        if {'type': object_type, 'id': object_id} in attached:
            return False
        self.post(
            f'/api/cis/tagging/tag-association/{tag_id}',
            params={'action': 'attach'},
            json={'object_id': {'type': object_type, 'id': object_id}}
        )
        return True

    # -------------------------------------------------------------------------
    # Supervisor
    # -------------------------------------------------------------------------

    def get_cluster_supervisor(self, cluster_moid: str) -> Optional[dict]:
        """Supervisor status for a cluster, or None when not enabled."""
        return self.get_optional(f'{NAMESPACE_MGMT}/clusters/{cluster_moid}')

    def find_supervisor_id(self, name: str) -> Optional[str]:
        summaries = self.get(f'{NAMESPACE_MGMT}/supervisors/summaries') or {}
        for item in summaries.get('items', []):
            if (item.get('info') or {}).get('name') == name:
                return item.get('supervisor')
        return None

    def enable_supervisor(self, cluster_moid: str, spec: dict) -> Optional[str]:
        """Enable the Supervisor on a compute cluster. Returns its id."""
        return self.post(
            f'{NAMESPACE_MGMT}/supervisors/{cluster_moid}',
            params={'action': 'enable_on_compute_cluster'},
            json=spec
        )

    # -------------------------------------------------------------------------
    # Supervisor Services
    # -------------------------------------------------------------------------

    def get_service(self, service_id: str) -> Optional[dict]:
        return self.get_optional(f'{NAMESPACE_MGMT}/supervisor-services/{service_id}')

    def get_service_version(self, service_id: str, version: str) -> Optional[dict]:
        return self.get_optional(f'{NAMESPACE_MGMT}/supervisor-services/{service_id}/versions/{version}')

    def register_service(self, definition_yaml: str) -> None:
        self.post(f'{NAMESPACE_MGMT}/supervisor-services', json={
            'vsphere_spec': {'version_spec': {'content': encode_content(definition_yaml)}}
        })

    def add_service_version(self, service_id: str, definition_yaml: str) -> None:
        self.post(f'{NAMESPACE_MGMT}/supervisor-services/{service_id}/versions', json={
            'vsphere_spec': {'content': encode_content(definition_yaml)}
        })

    def get_installed_service(self, supervisor_id: str, service_id: str) -> Optional[dict]:
        return self.get_optional(
            f'{NAMESPACE_MGMT}/supervisors/{supervisor_id}/supervisor-services/{service_id}'
        )

    def install_service(self, supervisor_id: str, service_id: str, version: str,
                        values_yaml: Optional[str] = None) -> None:
        spec = {'supervisor_service': service_id, 'version': version}
        if values_yaml:
            spec['yaml_service_config'] = encode_content(values_yaml)
        self.post(f'{NAMESPACE_MGMT}/supervisors/{supervisor_id}/supervisor-services', json=spec)

    # -------------------------------------------------------------------------
    # vSphere Namespaces
    # -------------------------------------------------------------------------

    def get_namespace(self, name: str) -> Optional[dict]:
        return self.get_optional(f'/api/vcenter/namespaces/instances/v2/{name}')

    def create_namespace(self, name: str, supervisor_id: str, storage_policy_id: str) -> None:
        self.post('/api/vcenter/namespaces/instances/v2', json={
            'namespace': name,
            'supervisor': supervisor_id,
            'storage_specs': [{'policy': storage_policy_id}],
        })
