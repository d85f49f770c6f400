"""Create license panel tables"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0a1c5e7d9b21'
down_revision = None
branch_labels = None
depends_on = None


def _index(table, *columns):
    for column in columns:
        op.create_index(f'ix_{table}_{column}', table, [column])


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=True),
        sa.Column('created_by', sa.String(length=80), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('balance', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('account_expiry_date', sa.DateTime(), nullable=True),
        sa.Column('server_status', sa.Boolean(), nullable=False),
        sa.Column('previous_is_active', sa.Boolean(), nullable=True),
        sa.Column('referral_code_used', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('balance >= 0', name='chk_user_balance_non_negative'),
        sa.UniqueConstraint('username'),
    )
    _index('users', 'username', 'role', 'email', 'created_by')

    op.create_table(
        'user_hierarchy',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ancestor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('descendant_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('depth', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('ancestor_id', 'descendant_id', name='uq_hierarchy_relationship'),
    )
    _index('user_hierarchy', 'ancestor_id', 'descendant_id')
    op.create_index('idx_hierarchy_ancestor_depth', 'user_hierarchy', ['ancestor_id', 'depth'])

    op.create_table(
        'admin_sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('token', sa.String(length=64), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('token'),
    )
    _index('admin_sessions', 'token', 'username', 'expires_at')

    op.create_table(
        'login_attempts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ip', sa.String(length=64), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=True),
    )
    _index('login_attempts', 'ip', 'timestamp')

    op.create_table(
        'blocked_ips',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ip', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False),
        sa.Column('is_permanent', sa.Boolean(), nullable=False),
        sa.Column('blocked_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
    )
    _index('blocked_ips', 'ip')

    op.create_table(
        'referral_codes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('created_by', sa.String(length=80), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('used_by', sa.String(length=80), nullable=True),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('initial_balance', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('expiry_days', sa.Integer(), nullable=True),
        sa.Column('expiry_date', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('code'),
    )
    _index('referral_codes', 'code', 'created_by')

    op.create_table(
        'license_keys',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('max_devices', sa.Integer(), nullable=False),
        sa.Column('current_devices', sa.Integer(), nullable=False),
        sa.Column('expiry_date', sa.DateTime(), nullable=False),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('price', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('duration_type', sa.String(length=10), nullable=False),
        sa.Column('created_by', sa.String(length=80), nullable=False),
        sa.UniqueConstraint('key'),
    )
    _index('license_keys', 'key', 'created_by')

    op.create_table(
        'devices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key_id', sa.Integer(), sa.ForeignKey('license_keys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('uuid', sa.String(length=128), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('key_id', 'uuid', name='uq_device_key_uuid'),
    )
    _index('devices', 'key_id')

    op.create_table(
        'global_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('price_per_day', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('updated_by', sa.String(length=80), nullable=True),
    )

    op.create_table(
        'duration_prices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('settings_id', sa.Integer(), sa.ForeignKey('global_settings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('type', sa.String(length=10), nullable=False),
    )

    op.create_table(
        'api_credentials',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('api_key', sa.String(length=255), nullable=False),
        sa.Column('secret_key', sa.String(length=255), nullable=False),
        sa.Column('modname', sa.String(length=120), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('updated_by', sa.String(length=80), nullable=True),
    )

    op.create_table(
        'username_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('type', sa.String(length=10), nullable=False),
        sa.Column('allowed_users', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('updated_by', sa.String(length=80), nullable=True),
        sa.UniqueConstraint('username'),
    )
    _index('username_permissions', 'username')

    op.create_table(
        'activities',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('actor', sa.String(length=80), nullable=False),
        sa.Column('key_id', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('extra', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=True),
    )
    _index('activities', 'action', 'actor', 'key_id', 'timestamp')

    op.create_table(
        'analytics_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key_id', sa.Integer(), nullable=True),
        sa.Column('uuid', sa.String(length=128), nullable=True),
        sa.Column('created_by', sa.String(length=80), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=True),
    )
    _index('analytics_events', 'key_id', 'created_by', 'timestamp')

    op.create_table(
        'password_reset_otps',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('otp_hash', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    _index('password_reset_otps', 'username')


def downgrade():
    for table in (
        'password_reset_otps', 'analytics_events', 'activities', 'username_permissions',
        'api_credentials', 'duration_prices', 'global_settings', 'devices', 'license_keys',
        'referral_codes', 'blocked_ips', 'login_attempts', 'admin_sessions', 'user_hierarchy', 'users',
    ):
        op.drop_table(table)
