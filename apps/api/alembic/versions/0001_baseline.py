"""Baseline migration - organizations, spaces, contacts and conversations

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table of the conversation core. Enum columns are stored as
VARCHAR(32) so the schema runs unchanged on PostgreSQL, MySQL and SQLite.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True)


def _public_id() -> sa.Column:
    return sa.Column('public_id', sa.String(40), nullable=False, unique=True)


def _org_id(index: bool = True) -> sa.Column:
    return sa.Column('org_id', sa.Integer(), sa.ForeignKey('orgs.id'), nullable=False, index=index)


def _fk(name: str, target: str, nullable: bool = True, index: bool = False) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey(target), nullable=nullable, index=index)


def _ts(name: str = 'created_at', nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _enum(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.String(32), nullable=nullable)


def _flag(name: str, default: bool) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.true() if default else sa.false())


SPACE_PERMISSION_FLAGS = (
    'can_create',
    'can_read',
    'can_comment',
    'can_reply',
    'can_delete',
    'can_change_workflow',
    'can_set_workflow_to_closed',
    'can_add_tags',
    'can_move_to_another_space',
    'can_add_to_another_space',
    'can_merge_convos',
    'can_add_participants',
)


def upgrade() -> None:
    """Create organization, space, identity, contact and conversation tables."""

    # ==========================================================================
    # Organizations
    # ==========================================================================
    op.create_table(
        'orgs',
        _id(),
        _public_id(),
        sa.Column('shortcode', sa.String(64), nullable=False, unique=True),
        sa.Column('name', sa.String(64), nullable=False),
        _ts(),
    )
    op.create_table(
        'org_member_profiles',
        _id(),
        _public_id(),
        _org_id(),
        sa.Column('account_id', sa.Integer(), nullable=True),
        sa.Column('first_name', sa.String(64)),
        sa.Column('last_name', sa.String(64)),
        sa.Column('handle', sa.String(64)),
        sa.Column('title', sa.String(64)),
        _ts('avatar_timestamp', nullable=True),
    )

    # ==========================================================================
    # Domains and identities
    # ==========================================================================
    op.create_table(
        'domains',
        _id(),
        _public_id(),
        _org_id(),
        sa.Column('domain', sa.String(256), nullable=False),
        _enum('domain_status'),
        _enum('sending_mode'),
        _ts(),
    )
    op.create_table(
        'email_identities',
        _id(),
        _public_id(),
        _org_id(),
        sa.Column('username', sa.String(32), nullable=False),
        sa.Column('domain_name', sa.String(128), nullable=False),
        _fk('domain_id', 'domains.id'),
        sa.Column('send_name', sa.String(128)),
        _flag('is_catch_all', False),
        _ts(),
        sa.UniqueConstraint('username', 'domain_name', name='uq_email_identities_address'),
    )

    # ==========================================================================
    # Spaces, members and teams
    # ==========================================================================
    op.create_table(
        'spaces',
        _id(),
        _public_id(),
        _org_id(),
        sa.Column('parent_space_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('shortcode', sa.String(64), nullable=False),
        _enum('type'),
        _flag('personal_space', False),
        sa.Column('color', sa.String(32)),
        sa.Column('icon', sa.String(32)),
        sa.Column('description', sa.String(512)),
        _ts('avatar_timestamp', nullable=True),
        _ts(),
        sa.UniqueConstraint('org_id', 'shortcode', name='uq_spaces_org_shortcode'),
    )
    op.create_table(
        'org_members',
        _id(),
        _public_id(),
        _org_id(),
        sa.Column('account_id', sa.Integer(), nullable=True),
        _enum('status'),
        _enum('role'),
        _fk('personal_space_id', 'spaces.id'),
        _fk('default_email_identity_id', 'email_identities.id'),
        _fk('org_member_profile_id', 'org_member_profiles.id'),
        _ts('added_at'),
        _ts('removed_at', nullable=True),
    )
    op.create_index('idx_org_members_org_account', 'org_members', ['org_id', 'account_id'])
    op.create_table(
        'teams',
        _id(),
        _public_id(),
        _org_id(),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('color', sa.String(32)),
        sa.Column('description', sa.String(512)),
        _fk('default_email_identity_id', 'email_identities.id'),
        _fk('default_space_id', 'spaces.id'),
        _ts(),
    )
    op.create_table(
        'team_members',
        _id(),
        _org_id(),
        _fk('team_id', 'teams.id', nullable=False),
        _fk('org_member_id', 'org_members.id', nullable=False, index=True),
        _ts('added_at'),
        sa.UniqueConstraint('team_id', 'org_member_id', name='uq_team_members_team_member'),
    )
    op.create_table(
        'space_members',
        _id(),
        _public_id(),
        _org_id(),
        _fk('space_id', 'spaces.id', nullable=False, index=True),
        _fk('org_member_id', 'org_members.id'),
        _fk('team_id', 'teams.id'),
        _enum('role'),
        _enum('notifications'),
        *[_flag(flag, True) for flag in SPACE_PERMISSION_FLAGS],
        _fk('added_by_org_member_id', 'org_members.id'),
        _ts('added_at'),
        sa.CheckConstraint(
            '(org_member_id IS NULL) <> (team_id IS NULL)',
            name='ck_space_members_member_or_team',
        ),
        sa.UniqueConstraint('space_id', 'org_member_id', name='uq_space_members_space_member'),
        sa.UniqueConstraint('space_id', 'team_id', name='uq_space_members_space_team'),
    )
    op.create_table(
        'space_workflows',
        _id(),
        _public_id(),
        _org_id(),
        _fk('space_id', 'spaces.id', nullable=False, index=True),
        _enum('type'),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(32), nullable=False),
        sa.Column('color', sa.String(32)),
        sa.Column('icon', sa.String(32)),
        sa.Column('description', sa.String(512)),
        _flag('disabled', False),
        _ts(),
    )
    op.create_table(
        'space_tags',
        _id(),
        _public_id(),
        _org_id(),
        _fk('space_id', 'spaces.id', nullable=False, index=True),
        sa.Column('label', sa.String(32), nullable=False),
        sa.Column('color', sa.String(32)),
        _ts(),
    )
    op.create_table(
        'email_identity_authorized_senders',
        _id(),
        _org_id(index=False),
        _fk('identity_id', 'email_identities.id', nullable=False),
        _fk('org_member_id', 'org_members.id'),
        _fk('team_id', 'teams.id'),
        _fk('space_id', 'spaces.id'),
        _flag('default', False),
        _fk('added_by_org_member_id', 'org_members.id'),
        _ts(),
        sa.CheckConstraint(
            '(CASE WHEN org_member_id IS NULL THEN 0 ELSE 1 END'
            ' + CASE WHEN team_id IS NULL THEN 0 ELSE 1 END'
            ' + CASE WHEN space_id IS NULL THEN 0 ELSE 1 END) = 1',
            name='ck_email_identity_authorized_senders_single_grantee',
        ),
    )
    op.create_index(
        'idx_authorized_senders_identity', 'email_identity_authorized_senders', ['identity_id']
    )

    # ==========================================================================
    # Contacts
    # ==========================================================================
    op.create_table(
        'contact_global_reputations',
        _id(),
        sa.Column('email_address', sa.String(256), nullable=False, unique=True),
        sa.Column('spam', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('new_sender', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('message_count', sa.Integer(), nullable=False, server_default='0'),
        _ts('last_updated'),
    )
    op.create_table(
        'contacts',
        _id(),
        _public_id(),
        _org_id(),
        _fk('reputation_id', 'contact_global_reputations.id', nullable=False, index=True),
        sa.Column('name', sa.String(128)),
        sa.Column('set_name', sa.String(128)),
        sa.Column('email_username', sa.String(128), nullable=False),
        sa.Column('email_domain', sa.String(128), nullable=False),
        _ts('avatar_timestamp', nullable=True),
        sa.Column('signature_plain_text', sa.Text()),
        sa.Column('signature_html', sa.Text()),
        _enum('type'),
        _enum('screener_status', nullable=True),
        _ts(),
        sa.UniqueConstraint(
            'org_id', 'email_username', 'email_domain', name='uq_contacts_org_address'
        ),
    )

    # ==========================================================================
    # Conversations
    # ==========================================================================
    op.create_table(
        'convos',
        _id(),
        _public_id(),
        _org_id(),
        _ts('last_updated_at'),
        _ts(),
    )
    op.create_table(
        'convo_subjects',
        _id(),
        _public_id(),
        _org_id(index=False),
        _fk('convo_id', 'convos.id', nullable=False, index=True),
        sa.Column('subject', sa.String(256), nullable=False),
        _ts(),
    )
    op.create_table(
        'convo_to_spaces',
        _id(),
        _public_id(),
        _org_id(index=False),
        _fk('convo_id', 'convos.id', nullable=False, index=True),
        _fk('space_id', 'spaces.id', nullable=False, index=True),
        sa.UniqueConstraint('convo_id', 'space_id', name='uq_convo_to_spaces_convo_space'),
    )
    op.create_table(
        'convo_participants',
        _id(),
        _public_id(),
        _org_id(index=False),
        _fk('convo_id', 'convos.id', nullable=False, index=True),
        _fk('org_member_id', 'org_members.id', index=True),
        _fk('team_id', 'teams.id'),
        _fk('contact_id', 'contacts.id'),
        _enum('role'),
        _enum('notifications'),
        _fk('email_identity_id', 'email_identities.id'),
        _ts('last_read_at', nullable=True),
        _flag('active', True),
        _flag('hidden', False),
        _ts(),
        sa.CheckConstraint(
            '(CASE WHEN org_member_id IS NULL THEN 0 ELSE 1 END'
            ' + CASE WHEN team_id IS NULL THEN 0 ELSE 1 END'
            ' + CASE WHEN contact_id IS NULL THEN 0 ELSE 1 END) = 1',
            name='ck_convo_participants_single_identity',
        ),
        sa.UniqueConstraint('convo_id', 'org_member_id', name='uq_convo_participants_convo_member'),
        sa.UniqueConstraint('convo_id', 'team_id', name='uq_convo_participants_convo_team'),
        sa.UniqueConstraint('convo_id', 'contact_id', name='uq_convo_participants_convo_contact'),
    )
    op.create_table(
        'convo_participant_team_members',
        _id(),
        _org_id(index=False),
        _fk('convo_participant_id', 'convo_participants.id', nullable=False, index=True),
        _fk('team_participant_id', 'convo_participants.id', nullable=False, index=True),
        sa.UniqueConstraint(
            'convo_participant_id',
            'team_participant_id',
            name='uq_convo_participant_team_members_pair',
        ),
    )

    # ==========================================================================
    # Entries
    # ==========================================================================
    op.create_table(
        'convo_entries',
        _id(),
        _public_id(),
        _org_id(index=False),
        _fk('convo_id', 'convos.id', nullable=False),
        _fk('author_id', 'convo_participants.id', nullable=False, index=True),
        _fk('reply_to_id', 'convo_entries.id'),
        _fk('subject_id', 'convo_subjects.id'),
        _enum('type'),
        _enum('visibility'),
        sa.Column('body', sa.JSON(), nullable=False),
        sa.Column('body_plain_text', sa.Text(), nullable=False),
        sa.Column('body_cleaned_html', sa.Text()),
        sa.Column('metadata', sa.JSON()),
        sa.Column('email_message_id', sa.String(512)),
        _ts(),
    )
    op.create_index('idx_convo_entries_convo_created', 'convo_entries', ['convo_id', 'created_at'])
    op.create_table(
        'convo_entry_replies',
        _id(),
        _org_id(index=False),
        _fk('entry_source_id', 'convo_entries.id', nullable=False, index=True),
        _fk('entry_reply_id', 'convo_entries.id', nullable=False, index=True),
        _ts(),
    )
    op.create_table(
        'convo_entry_private_visibility_participants',
        _id(),
        _org_id(index=False),
        _fk('entry_id', 'convo_entries.id', nullable=False, index=True),
        _fk('convo_member_id', 'convo_participants.id', nullable=False),
        _ts(),
    )
    op.create_table(
        'convo_entry_raw_html_emails',
        _id(),
        _org_id(index=False),
        _fk('entry_id', 'convo_entries.id', nullable=False, index=True),
        sa.Column('headers', sa.JSON(), nullable=False),
        sa.Column('html', sa.Text(), nullable=False),
        _ts('wipe_date'),
        _flag('keep', False),
        _flag('wiped', False),
    )
    op.create_table(
        'convo_seen_timestamps',
        sa.Column('convo_id', sa.Integer(), sa.ForeignKey('convos.id'), primary_key=True),
        sa.Column('participant_id', sa.Integer(), sa.ForeignKey('convo_participants.id'), primary_key=True),
        sa.Column('org_member_id', sa.Integer(), sa.ForeignKey('org_members.id'), primary_key=True),
        _org_id(index=False),
        _ts('seen_at'),
    )
    op.create_table(
        'convo_entry_seen_timestamps',
        sa.Column('entry_id', sa.Integer(), sa.ForeignKey('convo_entries.id'), primary_key=True),
        sa.Column('participant_id', sa.Integer(), sa.ForeignKey('convo_participants.id'), primary_key=True),
        sa.Column('org_member_id', sa.Integer(), sa.ForeignKey('org_members.id'), primary_key=True),
        _org_id(index=False),
        _ts('seen_at'),
    )

    # ==========================================================================
    # Attachments
    # ==========================================================================
    op.create_table(
        'convo_attachments',
        _id(),
        _public_id(),
        _org_id(index=False),
        _fk('convo_id', 'convos.id', nullable=False, index=True),
        _fk('convo_entry_id', 'convo_entries.id', index=True),
        sa.Column('file_name', sa.String(256), nullable=False),
        sa.Column('type', sa.String(256), nullable=False),
        sa.Column('size', sa.Integer()),
        _flag('inline', False),
        _flag('public', False),
        _fk('convo_participant_id', 'convo_participants.id', nullable=False),
        _ts(),
    )
    op.create_table(
        'pending_attachments',
        _id(),
        _public_id(),
        _org_id(),
        sa.Column('org_public_id', sa.String(40), nullable=False),
        sa.Column('filename', sa.String(256), nullable=False),
        _ts(),
    )

    # ==========================================================================
    # Workflows and tags
    # ==========================================================================
    op.create_table(
        'convo_workflows',
        _id(),
        _public_id(),
        _org_id(index=False),
        _fk('convo_id', 'convos.id', nullable=False),
        _fk('convo_to_space_id', 'convo_to_spaces.id', nullable=False),
        _fk('space_id', 'spaces.id', nullable=False),
        _fk('workflow_id', 'space_workflows.id'),
        _fk('by_org_member_id', 'org_members.id'),
        _ts(),
    )
    op.create_index('idx_convo_workflows_convo_space', 'convo_workflows', ['convo_id', 'space_id'])
    op.create_table(
        'convo_tags',
        _id(),
        _public_id(),
        _org_id(index=False),
        _fk('convo_id', 'convos.id', nullable=False, index=True),
        _fk('convo_to_space_id', 'convo_to_spaces.id', nullable=False),
        _fk('space_id', 'spaces.id', nullable=False),
        _fk('tag_id', 'space_tags.id', nullable=False),
        _fk('added_by_org_member_id', 'org_members.id'),
        _ts(),
    )


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    for table in (
        'convo_tags',
        'convo_workflows',
        'pending_attachments',
        'convo_attachments',
        'convo_entry_seen_timestamps',
        'convo_seen_timestamps',
        'convo_entry_raw_html_emails',
        'convo_entry_private_visibility_participants',
        'convo_entry_replies',
        'convo_entries',
        'convo_participant_team_members',
        'convo_participants',
        'convo_to_spaces',
        'convo_subjects',
        'convos',
        'contacts',
        'contact_global_reputations',
        'email_identity_authorized_senders',
        'space_tags',
        'space_workflows',
        'space_members',
        'team_members',
        'teams',
        'org_members',
        'spaces',
        'email_identities',
        'domains',
        'org_member_profiles',
        'orgs',
    ):
        op.drop_table(table)
