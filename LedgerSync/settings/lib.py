"""Settings library for the sync engine configuration.

Provides:
    - Schema validation and enforcement for the sync.json structure.
    - Loading, saving and reverting configuration sections.
    - Application data paths for the configuration file and the ledger database.
"""

import json
import logging
import pathlib
import shutil
from typing import Any, Dict, Optional

from PySide6 import QtCore

from ..core.signals import signals
from ..status import status

app_name: str = 'LedgerSync'

SYNC_SCHEMA: Dict[str, Any] = {
    'remote': {
        'type': dict,
        'required': True,
        'item_schema': {
            'spreadsheet_id': {'type': str, 'required': True},
            'worksheet': {'type': str, 'required': True},
            'service_account_file': {'type': str, 'required': True},
        }
    },
    'sync': {
        'type': dict,
        'required': True,
        'item_schema': {
            'max_attempts': {'type': int, 'required': True, 'min': 1},
            'backoff_base': {'type': (int, float), 'required': True, 'min': 0},
            'backoff_factor': {'type': (int, float), 'required': True, 'min': 1},
            'seed_sample_data': {'type': bool, 'required': True},
        }
    },
    'connectivity': {
        'type': dict,
        'required': True,
        'item_schema': {
            'probe_host': {'type': str, 'required': True},
            'probe_port': {'type': int, 'required': True, 'min': 1},
            'probe_timeout': {'type': (int, float), 'required': True, 'min': 0},
            'poll_interval': {'type': int, 'required': True, 'min': 1},
        }
    },
}


def _validate_section(section_name: str, section: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate one section of the sync configuration against its item schema.

    Args:
        section_name: Name of the section, used in error messages.
        section: The section data.
        item_schema: Mapping of field name to its spec (type, required, min).

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a required field is missing or a value is out of range.
    """
    logging.debug(f'Validating "{section_name}" section.')
    for field, spec in item_schema.items():
        if field not in section:
            if spec.get('required'):
                msg: str = f'Section "{section_name}" is missing required field "{field}".'
                logging.error(msg)
                raise ValueError(msg)
            continue

        value = section[field]
        # bool is an int subclass, reject it for numeric fields
        if spec['type'] is not bool and isinstance(value, bool):
            msg = f'Field "{section_name}.{field}" must be {spec["type"]}, got bool.'
            logging.error(msg)
            raise TypeError(msg)
        if not isinstance(value, spec['type']):
            msg = f'Field "{section_name}.{field}" must be {spec["type"]}, got {type(value)}.'
            logging.error(msg)
            raise TypeError(msg)
        if 'min' in spec and value < spec['min']:
            msg = f'Field "{section_name}.{field}" must be at least {spec["min"]}, got {value}.'
            logging.error(msg)
            raise ValueError(msg)

    unknown = set(section.keys()) - set(item_schema.keys())
    if unknown:
        msg = f'Section "{section_name}" has unknown fields: {", ".join(sorted(unknown))}.'
        logging.error(msg)
        raise ValueError(msg)


class ConfigPaths:
    """Manage application file paths and ensure the default configuration exists.

    Paths default to the platform's application data location. Passing
    ``config_dir`` places everything under that directory instead.
    """

    def __init__(self, config_dir: Optional[str | pathlib.Path] = None) -> None:
        """Set up application paths and copy the default template where needed.

        Args:
            config_dir: Optional directory overriding the application data location.
        """
        if config_dir is None:
            QtCore.QCoreApplication.setApplicationName(app_name)
            QtCore.QCoreApplication.setOrganizationName('')
            logging.debug(f'Setting application name: {app_name}')

            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            config_dir = pathlib.Path(p) / 'config'
        logging.debug(f'Using config directory: {config_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.config_template: pathlib.Path = self.template_dir / 'sync.json.template'

        self.config_dir: pathlib.Path = pathlib.Path(config_dir)
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        self.config_path: pathlib.Path = self.config_dir / 'sync.json'
        self.db_path: pathlib.Path = self.db_dir / 'ledger.db'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify the template exists, create directories and copy the default config if absent.

        Raises:
            FileNotFoundError: If the template file is missing.
        """
        logging.debug(f'Verifying required templates in {self.template_dir}')
        if not self.config_template.exists():
            msg: str = f'Missing config template: {self.config_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        for d in (self.config_dir, self.db_dir):
            if not d.exists():
                logging.debug(f'Creating directory: {d}')
                d.mkdir(parents=True, exist_ok=True)

        if not self.config_path.exists():
            logging.debug(f'Copying default config to {self.config_path}')
            shutil.copy(self.config_template, self.config_path)

    def revert_config_to_template(self) -> None:
        """Restore sync.json from the default template file."""
        logging.debug(f'Reverting config at {self.config_path} to template.')
        shutil.copy(self.config_template, self.config_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save sync.json sections.
    """

    def __init__(self, config_dir: Optional[str | pathlib.Path] = None) -> None:
        """Initialize SettingsAPI and load the configuration.

        Args:
            config_dir: Optional directory overriding the application data location.
        """
        super().__init__(config_dir)

        self.config_data: Dict[str, Any] = {k: {} for k in SYNC_SCHEMA.keys()}
        self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load sync.json from disk and validate against schema.

        Returns:
            The loaded configuration dictionary.

        Raises:
            status.SyncConfigNotFoundException: If sync.json file is missing.
            status.SyncConfigInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading config from "{self.config_path}"')
        if not self.config_path.exists():
            raise status.SyncConfigNotFoundException

        try:
            with self.config_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_config_data(data)
        except status.SyncConfigInvalidException:
            raise
        except (ValueError, TypeError) as ex:
            raise status.SyncConfigInvalidException(str(ex)) from ex

        self.config_data = data
        return self.config_data

    def validate_config_data(self, data: Dict[str, Any] = None) -> None:
        """Validate configuration data against SYNC_SCHEMA.

        Args:
            data (dict, optional): Data to validate. Defaults to self.config_data.

        Raises:
            status.SyncConfigInvalidException: If a required section is missing or validation fails.
        """
        if data is None:
            data = self.config_data
        if not data:
            raise status.SyncConfigInvalidException('Config data is empty.')

        logging.debug('Validating config data against schema.')
        for field, specs in SYNC_SCHEMA.items():
            if specs.get('required') and field not in data:
                raise status.SyncConfigInvalidException(f'Missing required section: {field}')

            if not isinstance(data[field], specs['type']):
                raise status.SyncConfigInvalidException(
                    f'Section "{field}" must be {specs["type"]}, got {type(data[field])}.'
                )
            try:
                _validate_section(field, data[field], specs['item_schema'])
            except (ValueError, TypeError) as ex:
                raise status.SyncConfigInvalidException(str(ex)) from ex

        logging.debug('Config data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a configuration section.

        Raises:
            KeyError: If section_name is not a known section.
        """
        return self.config_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace and persist a configuration section.

        Args:
            section_name: Section to update.
            new_data: New data dict for the section.

        Raises:
            ValueError: If section_name is unrecognized.
            status.SyncConfigInvalidException: If the new data fails validation.
        """
        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        current_section_data: Dict[str, Any] = self.config_data[section_name].copy()

        self.config_data[section_name] = new_data
        try:
            self.validate_config_data()
        except status.SyncConfigInvalidException:
            logging.error(f'Validation error on set_section("{section_name}"), restoring previous values.')
            self.config_data[section_name] = current_section_data
            raise

        self.save_section(section_name)
        signals.configSectionChanged.emit(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a configuration section to its template default and save.

        Raises:
            ValueError: If section_name is invalid or not present in the template.
        """
        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.config_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        if section_name not in template_data:
            msg = f'No template-based revert logic for section "{section_name}".'
            logging.error(msg)
            raise ValueError(msg)

        self.config_data[section_name] = template_data[section_name]
        self.save_section(section_name)

        signals.configSectionChanged.emit(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single configuration section to sync.json.

        Raises:
            ValueError: If section_name is not recognized.
        """
        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.config_path.open('r', encoding='utf-8') as f:
            original_data: Dict[str, Any] = json.load(f)

        new_data: Dict[str, Any] = original_data.copy()
        new_data[section_name] = self.config_data[section_name]

        with self.config_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)
        logging.debug(f'Saved section "{section_name}" to "{self.config_path}".')

    def resolve_path(self, value: str) -> Optional[pathlib.Path]:
        """Resolve a configured file path. Relative paths are relative to the config directory.

        Returns:
            The resolved path, or None if ``value`` is empty.
        """
        if not value:
            return None
        path = pathlib.Path(value).expanduser()
        if not path.is_absolute():
            path = self.config_dir / path
        return path
