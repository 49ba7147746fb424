"""
Configuration manager for supplier templates.

Handles storage and retrieval of supplier extraction templates and the
tenant-wide default matching tolerances as JSON files, with backup and
restore capabilities.
"""

import os
import json
import time
from typing import Any, Dict, List, Optional
from pathlib import Path

from fuel_invoices.models import ConfigurationError, MatchingTolerances, SupplierTemplate
from .presets import DEFAULT_MATCHING_TOLERANCES, SupplierTemplatePresets

import logging
logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "FUEL_INVOICES_CONFIG_DIR"


def _normalize_vat(vat_number: Optional[str]) -> str:
    """Strip whitespace and an IT country prefix from a VAT number."""
    vat = (vat_number or "").strip().upper()
    return vat[2:] if vat.startswith("IT") else vat


class ConfigManager:
    """
    Manages supplier template storage for the fuel invoice engine.

    Templates are keyed by ``template_id`` in ``templates.json``; default
    tolerances live in ``settings.json``. Every destructive operation
    first writes a backup.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Args:
            config_dir: Store directory; ``~/.fuel_invoices/config`` when omitted
        """
        self.logger = logging.getLogger(f"{__name__}.ConfigManager")

        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.fuel_invoices' / 'config'
        self.templates_file = self.config_dir / 'templates.json'
        self.settings_file = self.config_dir / 'settings.json'
        self.backup_dir = self.config_dir / 'backups'
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        self.logger.info(f"Template store at {self.config_dir}")

    def save_template(self, template: SupplierTemplate) -> bool:
        """
        Save a supplier template, replacing any template with the same id.

        Args:
            template: Supplier template to save

        Returns:
            True if saved successfully, False otherwise
        """
        try:
            templates = self._load_templates_file()

            now = time.time()
            existing = templates.get(template.template_id)
            template_data = template.to_dict()
            template_data['created_at'] = (existing or {}).get('created_at') or template.created_at or now
            template_data['updated_at'] = now

            templates[template.template_id] = template_data
            self._save_templates_file(templates)

            self.logger.info(f"Saved supplier template: {template.template_id}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to save template '{template.template_id}': {e}")
            return False

    def load_template(self, template_id: str) -> Optional[SupplierTemplate]:
        """
        Load a supplier template.

        Args:
            template_id: ID of the template to load

        Returns:
            SupplierTemplate or None if not found
        """
        try:
            templates = self._load_templates_file()

            if template_id not in templates:
                self.logger.warning(f"Supplier template not found: {template_id}")
                return None

            return SupplierTemplate.from_dict(templates[template_id])

        except Exception as e:
            self.logger.error(f"Failed to load template '{template_id}': {e}")
            return None

    def list_templates(self) -> List[Dict[str, Any]]:
        """
        List stored templates without their extraction rules.

        Returns:
            List of template summary dictionaries
        """
        try:
            templates = self._load_templates_file()

            return [
                {
                    'template_id': template_id,
                    'name': data.get('name'),
                    'supplier_name': data.get('supplier_name'),
                    'vat_number': data.get('vat_number'),
                    'is_active': data.get('is_active', True),
                    'field_names': sorted((data.get('template_config') or {}).get('fields', {})),
                    'created_at': data.get('created_at'),
                    'updated_at': data.get('updated_at')
                }
                for template_id, data in templates.items()
            ]

        except Exception as e:
            self.logger.error(f"Failed to list templates: {e}")
            return []

    def delete_template(self, template_id: str) -> bool:
        """
        Delete a supplier template.

        Args:
            template_id: ID of the template to delete

        Returns:
            True if deleted successfully, False otherwise
        """
        try:
            templates = self._load_templates_file()

            if template_id not in templates:
                self.logger.warning(f"Supplier template not found for deletion: {template_id}")
                return False

            self.create_backup(f"before_delete_{template_id}")

            del templates[template_id]
            self._save_templates_file(templates)

            self.logger.info(f"Deleted supplier template: {template_id}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to delete template '{template_id}': {e}")
            return False

    def template_exists(self, template_id: str) -> bool:
        """Check if a supplier template exists."""
        try:
            return template_id in self._load_templates_file()
        except Exception as e:
            self.logger.error(f"Failed to check template existence '{template_id}': {e}")
            return False

    def find_template_by_vat(self, vat_number: Optional[str]) -> Optional[SupplierTemplate]:
        """
        Find the active template of the supplier with ``vat_number``.

        When several active templates exist for the supplier the most
        recently created one wins.
        """
        if not vat_number:
            return None
        wanted = _normalize_vat(vat_number)

        try:
            templates = self._load_templates_file()
        except Exception as e:
            self.logger.error(f"Failed to search templates for VAT {vat_number}: {e}")
            return None

        candidates = [
            data for data in templates.values()
            if data.get('is_active', True) and _normalize_vat(data.get("vat_number")) == wanted
        ]
        if not candidates:
            self.logger.info(f"No active template for supplier VAT {vat_number}")
            return None

        newest = max(candidates, key=lambda d: (d.get('created_at') or 0, d['template_id']))
        try:
            return SupplierTemplate.from_dict(newest)
        except Exception as e:
            self.logger.error(f"Stored template '{newest.get('template_id')}' is invalid: {e}")
            return None

    def seed_preset_templates(self, overwrite: bool = False) -> int:
        """
        Store the preset supplier templates.

        Args:
            overwrite: Replace templates that already exist

        Returns:
            Number of templates written
        """
        written = 0
        for template in SupplierTemplatePresets.list_templates():
            if not overwrite and self.template_exists(template.template_id):
                continue
            if self.save_template(template):
                written += 1
        self.logger.info(f"Seeded {written} preset template(s)")
        return written

    def save_default_tolerances(self, tolerances: MatchingTolerances) -> bool:
        """
        Store the tenant-wide default matching tolerances.

        Returns:
            True if saved successfully, False otherwise
        """
        try:
            _write_json(self.settings_file, {
                'defaultTolerances': tolerances.to_dict(),
                'updated_at': time.time()
            })
        except Exception as e:
            self.logger.error(f"Could not store default tolerances: {e}")
            return False

        self.logger.info("Default matching tolerances updated")
        return True

    def load_default_tolerances(self) -> MatchingTolerances:
        """Stored default tolerances; the built-in defaults when none are stored."""
        if not self.settings_file.exists():
            return DEFAULT_MATCHING_TOLERANCES

        try:
            stored = _read_json(self.settings_file).get('defaultTolerances')
            return MatchingTolerances.from_dict(stored) if stored else DEFAULT_MATCHING_TOLERANCES
        except Exception as e:
            self.logger.error(f"Stored default tolerances are unreadable, using built-in defaults: {e}")
            return DEFAULT_MATCHING_TOLERANCES

    def get_tolerances_for(self, template: Optional[SupplierTemplate]) -> MatchingTolerances:
        """Tolerances of ``template`` when it has its own, else the defaults."""
        if template is not None and template.matching_config is not None:
            return template.matching_config
        return self.load_default_tolerances()

    def create_backup(self, backup_name: Optional[str] = None) -> str:
        """
        Snapshot the stored templates and default tolerances.

        Args:
            backup_name: File stem of the snapshot; a timestamped stem when omitted

        Returns:
            Path of the snapshot file

        Raises:
            ConfigurationError: If the snapshot cannot be written
        """
        backup_name = backup_name or f"snapshot_{int(time.time())}"
        snapshot_file = self.backup_dir / f"{backup_name}.json"
        try:
            snapshot = {
                'created_at': time.time(),
                'templates': self._load_templates_file(),
                'settings': _read_json(self.settings_file) if self.settings_file.exists() else {}
            }
            _write_json(snapshot_file, snapshot)
        except Exception as e:
            self.logger.error(f"Could not snapshot template store to {snapshot_file}: {e}")
            raise ConfigurationError(f"Template store snapshot failed: {e}")

        self.logger.info(f"Template store snapshot written to {snapshot_file}")
        return str(snapshot_file)

    def restore_backup(self, backup_path: str) -> bool:
        """
        Replace the stored templates and tolerances with a snapshot.

        The current state is snapshotted as ``before_restore`` first.

        Returns:
            True if restored successfully, False otherwise
        """
        try:
            snapshot_file = Path(backup_path)
            if not snapshot_file.is_file():
                raise ConfigurationError(f"No snapshot at {backup_path}")

            snapshot = _read_json(snapshot_file)
            self.create_backup("before_restore")

            self._save_templates_file(snapshot.get('templates') or {})
            if snapshot.get('settings'):
                _write_json(self.settings_file, snapshot['settings'])
            else:
                self.settings_file.unlink(missing_ok=True)

            self.logger.info(f"Template store restored from {backup_path}")
            return True

        except Exception as e:
            self.logger.error(f"Could not restore template store from '{backup_path}': {e}")
            return False

    def get_config_info(self) -> Dict[str, Any]:
        """Summary of the store for health checks."""
        try:
            templates = self._load_templates_file()
        except Exception as e:
            self.logger.error(f"Template store is unreadable: {e}")
            return {'error': str(e)}

        return {
            'config_directory': str(self.config_dir),
            'templates_count': len(templates),
            'active_templates_count': sum(1 for t in templates.values() if t.get('is_active', True)),
            'templates_file_exists': self.templates_file.exists(),
            'settings_file_exists': self.settings_file.exists(),
            'backup_directory': str(self.backup_dir),
            'backup_count': sum(1 for _ in self.backup_dir.glob('*.json'))
        }

    def _load_templates_file(self) -> Dict[str, Any]:
        if not self.templates_file.exists():
            return {}
        return _read_json(self.templates_file)

    def _save_templates_file(self, templates: Dict[str, Any]):
        _write_json(self.templates_file, templates)


def _read_json(path: Path) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _write_json(path: Path, data: Any):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


_store: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """
    Process-wide template store, created on first use.

    The directory comes from FUEL_INVOICES_CONFIG_DIR when set.
    """
    global _store
    if _store is None:
        _store = ConfigManager(os.environ.get(CONFIG_DIR_ENV))
    return _store
