"""
Configuration Manager for holder risk analysis
Loads configuration from YAML files with environment variable support
"""

import os
import re
import yaml
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from pathlib import Path


MOCK_STRATEGIES = ("none", "static", "random")

DEFAULT_TARGET_CHAINS = ["bnb", "ethereum", "polygon", "arbitrum", "optimism"]

DEFAULT_TOP_N_LEVELS = [1, 5, 10, 20, 50, 100]

DEFAULT_BURN_ADDRESSES = [
    "0x0000000000000000000000000000000000000000",
    "0x000000000000000000000000000000000000dead",
]

DEFAULT_LOCKED_ADDRESSES = [
    "0x5c69bee701ef814a2b6a3edd4b1652cb9cc5aa6f",  # Uniswap V2 factory
    "0x1f98431c8ad98523631ae4a59f267346ea31f984",  # Uniswap V3 factory
    "0xca143ce32fe78f1f7019d7d551a6402fc5350c73",  # PancakeSwap V2 factory
    "0x0ed7e52944161450477ee417de9cd3a859b14fd0",  # PancakeSwap V1 factory
]


@dataclass
class LabelConfig:
    """Label resolution configuration"""
    dataset_path: Optional[str] = None
    query_id: int = 5177452
    target_chains: List[str] = field(
        default_factory=lambda: list(DEFAULT_TARGET_CHAINS)
    )
    mock_strategy: str = "none"
    mock_hit_rate: float = 0.3
    mock_seed: Optional[int] = None
    static_labels: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    batch_delay_ms: int = 1000


@dataclass
class RateLimitConfig:
    """Remote label query rate limit"""
    max_requests: int = 100
    window_s: float = 60.0


@dataclass
class ClassifierConfig:
    """Classification resolver configuration"""
    label_confidence_threshold: float = 0.6
    skip_chain_analysis_on_label_hit: bool = True
    batch_size: int = 5
    batch_delay_s: float = 2.0
    transaction_limit: int = 1000
    collaborator_timeout_s: float = 30.0
    label_timeout_s: float = 90.0


@dataclass
class ConcentrationConfig:
    """Concentration risk engine configuration"""
    whale_threshold: float = 5.0
    top_n_levels: List[int] = field(
        default_factory=lambda: list(DEFAULT_TOP_N_LEVELS)
    )
    exclude_exchanges: bool = False


@dataclass
class ClientConfig:
    """HTTP client configuration"""
    dune_api_key: Optional[str] = None
    dune_base_url: str = "https://api.dune.com/api/v1"
    dune_poll_interval_s: float = 1.0
    dune_max_polls: int = 60
    bscscan_api_key: Optional[str] = None
    bscscan_base_url: str = "https://api.bscscan.com/api"
    request_timeout_s: float = 30.0


@dataclass
class SupplyConfig:
    """Token supply normalization configuration"""
    decimals: int = 18
    total_supply_raw: Optional[str] = None
    burn_addresses: List[str] = field(
        default_factory=lambda: list(DEFAULT_BURN_ADDRESSES)
    )
    locked_addresses: List[str] = field(
        default_factory=lambda: list(DEFAULT_LOCKED_ADDRESSES)
    )


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    output_file: Optional[str] = None


@dataclass
class AnalysisConfig:
    """Complete analysis configuration"""
    label_config: LabelConfig = field(default_factory=LabelConfig)
    rate_limit_config: RateLimitConfig = field(default_factory=RateLimitConfig)
    classifier_config: ClassifierConfig = field(default_factory=ClassifierConfig)
    concentration_config: ConcentrationConfig = field(default_factory=ConcentrationConfig)
    client_config: ClientConfig = field(default_factory=ClientConfig)
    supply_config: SupplyConfig = field(default_factory=SupplyConfig)
    log_config: LogConfig = field(default_factory=LogConfig)


class ConfigurationManager:
    """Manages analysis configuration from YAML files and environment variables"""

    def __init__(self, config_path: str):
        """
        Initialize configuration manager

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None
        self._analysis_config: Optional[AnalysisConfig] = None

    def load_config(self) -> AnalysisConfig:
        """
        Load and validate configuration from file

        Returns:
            AnalysisConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        with open(self.config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        if not isinstance(raw_config, dict):
            raise ValueError("Configuration root must be a mapping")

        self._config_data = self._substitute_env_vars(raw_config)
        self._analysis_config = self._parse_config(self._config_data)

        return self._analysis_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "classifier.batch_size")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value = self._config_data
        for k in key.split('.'):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR_NAME} environment variables

        Supports full-value and embedded substitution:
        - Full: "${DUNE_API_KEY}" -> "abc123"
        - Embedded: "https://api.com/?key=${KEY}" -> "https://api.com/?key=abc123"

        Raises:
            ValueError: If a referenced variable is not set
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            def replace_var(match):
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(
                        f"Environment variable {var_name} not found"
                    )
                return value

            return re.sub(r'\$\{([^}]+)\}', replace_var, config)
        else:
            return config

    def _parse_config(self, config: Dict[str, Any]) -> AnalysisConfig:
        """
        Parse raw configuration into typed objects

        Raises:
            ValueError: If configuration is invalid
        """
        label_data = config.get('labels') or {}
        mock_strategy = label_data.get('mock_strategy', 'none')
        if mock_strategy not in MOCK_STRATEGIES:
            raise ValueError(
                f"Unknown mock_strategy '{mock_strategy}', "
                f"expected one of {', '.join(MOCK_STRATEGIES)}"
            )
        mock_hit_rate = float(label_data.get('mock_hit_rate', 0.3))
        if not 0.0 <= mock_hit_rate <= 1.0:
            raise ValueError("labels.mock_hit_rate must be within [0, 1]")

        label_config = LabelConfig(
            dataset_path=label_data.get('dataset_path'),
            query_id=int(label_data.get('query_id', 5177452)),
            target_chains=[
                c.lower() for c in label_data.get('target_chains', DEFAULT_TARGET_CHAINS)
            ],
            mock_strategy=mock_strategy,
            mock_hit_rate=mock_hit_rate,
            mock_seed=label_data.get('mock_seed'),
            static_labels=label_data.get('static_labels') or {},
            batch_delay_ms=int(label_data.get('batch_delay_ms', 1000))
        )

        rate_data = config.get('rate_limit') or {}
        rate_limit_config = RateLimitConfig(
            max_requests=int(rate_data.get('max_requests', 100)),
            window_s=float(rate_data.get('window_s', 60.0))
        )
        if rate_limit_config.max_requests <= 0:
            raise ValueError("rate_limit.max_requests must be positive")
        if rate_limit_config.window_s <= 0:
            raise ValueError("rate_limit.window_s must be positive")

        classifier_data = config.get('classifier') or {}
        classifier_config = ClassifierConfig(
            label_confidence_threshold=float(
                classifier_data.get('label_confidence_threshold', 0.6)
            ),
            skip_chain_analysis_on_label_hit=bool(
                classifier_data.get('skip_chain_analysis_on_label_hit', True)
            ),
            batch_size=int(classifier_data.get('batch_size', 5)),
            batch_delay_s=float(classifier_data.get('batch_delay_s', 2.0)),
            transaction_limit=int(classifier_data.get('transaction_limit', 1000)),
            collaborator_timeout_s=float(
                classifier_data.get('collaborator_timeout_s', 30.0)
            ),
            label_timeout_s=float(classifier_data.get('label_timeout_s', 90.0))
        )
        if not 0.0 <= classifier_config.label_confidence_threshold <= 1.0:
            raise ValueError("classifier.label_confidence_threshold must be within [0, 1]")
        if classifier_config.batch_size < 1:
            raise ValueError("classifier.batch_size must be at least 1")
        if classifier_config.collaborator_timeout_s <= 0 or classifier_config.label_timeout_s <= 0:
            raise ValueError("classifier timeouts must be positive")

        concentration_data = config.get('concentration') or {}
        concentration_config = ConcentrationConfig(
            whale_threshold=float(concentration_data.get('whale_threshold', 5.0)),
            top_n_levels=[
                int(n) for n in concentration_data.get('top_n_levels', DEFAULT_TOP_N_LEVELS)
            ],
            exclude_exchanges=bool(concentration_data.get('exclude_exchanges', False))
        )
        if not 0.0 < concentration_config.whale_threshold <= 100.0:
            raise ValueError("concentration.whale_threshold must be within (0, 100]")

        client_data = config.get('clients') or {}
        client_config = ClientConfig(
            dune_api_key=client_data.get('dune_api_key') or None,
            dune_base_url=client_data.get('dune_base_url', 'https://api.dune.com/api/v1'),
            dune_poll_interval_s=float(client_data.get('dune_poll_interval_s', 1.0)),
            dune_max_polls=int(client_data.get('dune_max_polls', 60)),
            bscscan_api_key=client_data.get('bscscan_api_key') or None,
            bscscan_base_url=client_data.get('bscscan_base_url', 'https://api.bscscan.com/api'),
            request_timeout_s=float(client_data.get('request_timeout_s', 30.0))
        )

        supply_data = config.get('supply') or {}
        total_supply_raw = supply_data.get('total_supply_raw')
        supply_config = SupplyConfig(
            decimals=int(supply_data.get('decimals', 18)),
            total_supply_raw=str(total_supply_raw) if total_supply_raw is not None else None,
            burn_addresses=[
                a.lower() for a in supply_data.get('burn_addresses', DEFAULT_BURN_ADDRESSES)
            ],
            locked_addresses=[
                a.lower() for a in supply_data.get('locked_addresses', DEFAULT_LOCKED_ADDRESSES)
            ]
        )

        log_data = config.get('logging') or {}
        log_config = LogConfig(
            level=log_data.get('level', 'INFO'),
            format=log_data.get('format', 'json'),
            output_file=log_data.get('output_file')
        )

        return AnalysisConfig(
            label_config=label_config,
            rate_limit_config=rate_limit_config,
            classifier_config=classifier_config,
            concentration_config=concentration_config,
            client_config=client_config,
            supply_config=supply_config,
            log_config=log_config
        )
