"""Initial portal schema

Revision ID: 001_initial_portal_schema
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_portal_schema'
down_revision = None
branch_labels = None
depends_on = None

user_role = postgresql.ENUM('admin', 'client', 'user', name='user_role', create_type=False)
client_status = postgresql.ENUM('active', 'inactive', name='client_status', create_type=False)
access_type = postgresql.ENUM('view', 'download', 'preview', name='access_type', create_type=False)
message_type = postgresql.ENUM(
    'admin_to_client', 'admin_to_user', 'client_to_user',
    'client_to_admin', 'user_to_admin', 'user_to_client',
    name='message_type', create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (user_role, client_status, access_type, message_type):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'auth_users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_auth_users_email', 'auth_users', ['email'], unique=True)

    op.create_table(
        'auth_sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('token_hash', sa.String(64), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['auth_users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_auth_sessions_user_id', 'auth_sessions', ['user_id'])
    op.create_index('ix_auth_sessions_token_hash', 'auth_sessions', ['token_hash'], unique=True)

    op.create_table(
        'revoked_tokens',
        sa.Column('jti', sa.String(64), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('jti'),
    )

    op.create_table(
        'clients',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('company_name', sa.String(), nullable=False),
        sa.Column('contact_email', sa.String(), nullable=False),
        sa.Column('status', client_status, nullable=False, server_default='active'),
        sa.Column('client_admin_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_clients_contact_email', 'clients', ['contact_email'])

    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('role', user_role, nullable=False, server_default='user'),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['id'], ['auth_users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.CheckConstraint('length(full_name) > 0', name='profiles_full_name_check'),
        sa.CheckConstraint("role != 'admin' OR client_id IS NULL", name='profiles_admin_no_client_check'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_profiles_email', 'profiles', ['email'])
    op.create_index('ix_profiles_client_id', 'profiles', ['client_id'])
    op.create_foreign_key(
        'fk_clients_client_admin_id', 'clients', 'profiles',
        ['client_admin_id'], ['id'], ondelete='SET NULL',
    )

    op.create_table(
        'files',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('original_filename', sa.String(), nullable=False),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('file_type', sa.String(), nullable=False),
        sa.Column('uploaded_by', sa.Uuid(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['uploaded_by'], ['profiles.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('storage_path'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_files_uploaded_by', 'files', ['uploaded_by'])

    op.create_table(
        'file_assignments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('file_id', sa.Uuid(), nullable=False),
        sa.Column('assigned_to_user', sa.Uuid(), nullable=True),
        sa.Column('assigned_to_client', sa.Uuid(), nullable=True),
        sa.Column('assigned_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['file_id'], ['files.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_to_user'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_to_client'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_by'], ['profiles.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "(assigned_to_user IS NOT NULL AND assigned_to_client IS NULL) OR "
            "(assigned_to_user IS NULL AND assigned_to_client IS NOT NULL)",
            name='file_assignments_single_target_check',
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_file_assignments_file_id', 'file_assignments', ['file_id'])
    op.create_index('ix_file_assignments_assigned_to_user', 'file_assignments', ['assigned_to_user'])
    op.create_index('ix_file_assignments_assigned_to_client', 'file_assignments', ['assigned_to_client'])

    op.create_table(
        'file_access_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('file_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('access_type', access_type, nullable=False),
        sa.Column('accessed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['file_id'], ['files.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_file_access_logs_file_accessed', 'file_access_logs', ['file_id', 'accessed_at'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('sender_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_id', sa.Uuid(), nullable=False),
        sa.Column('subject', sa.String(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('message_type', message_type, nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['sender_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['recipient_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.CheckConstraint('length(content) > 0', name='messages_content_check'),
        sa.CheckConstraint('sender_id != recipient_id', name='messages_different_users'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    op.create_index('ix_messages_recipient_id', 'messages', ['recipient_id'])
    op.create_index('ix_messages_recipient_read', 'messages', ['recipient_id', 'read_at'])

    op.create_table(
        'news',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['created_by'], ['profiles.id'], ondelete='CASCADE'),
        sa.CheckConstraint('length(title) > 0', name='news_title_check'),
        sa.CheckConstraint('length(content) > 0', name='news_content_check'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'news_assignments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('news_id', sa.Uuid(), nullable=False),
        sa.Column('assigned_to_user', sa.Uuid(), nullable=True),
        sa.Column('assigned_to_client', sa.Uuid(), nullable=True),
        sa.Column('assigned_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['news_id'], ['news.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_to_user'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_to_client'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_by'], ['profiles.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            'assigned_to_user IS NULL OR assigned_to_client IS NULL',
            name='news_assignments_single_target_check',
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_news_assignments_news_id', 'news_assignments', ['news_id'])
    op.create_index('ix_news_assignments_assigned_to_user', 'news_assignments', ['assigned_to_user'])
    op.create_index('ix_news_assignments_assigned_to_client', 'news_assignments', ['assigned_to_client'])


def downgrade() -> None:
    op.drop_table('news_assignments')
    op.drop_table('news')
    op.drop_table('messages')
    op.drop_table('file_access_logs')
    op.drop_table('file_assignments')
    op.drop_table('files')
    op.drop_constraint('fk_clients_client_admin_id', 'clients', type_='foreignkey')
    op.drop_table('profiles')
    op.drop_table('clients')
    op.drop_table('revoked_tokens')
    op.drop_table('auth_sessions')
    op.drop_table('auth_users')

    bind = op.get_bind()
    for enum_type in (message_type, access_type, client_status, user_role):
        enum_type.drop(bind, checkfirst=True)
