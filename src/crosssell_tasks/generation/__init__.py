"""Opportunity to task generation.

Two stores are involved and they share no transaction: tasks are written
in one batch, then each opportunity is claimed for its task with a
conditional update. A task can therefore exist while its opportunity is
still unclaimed (claim failed) or claimed by another task (a concurrent
run won the claim). Such tasks are reported, never deleted; see
``SQLiteRepository.list_orphaned_tasks``.

Stages:

- ``OpportunitySelector``: eligible candidates in rank order.
- ``TaskMaterializer``: pure opportunity -> task draft mapping.
- ``BatchWriter``: one all-or-nothing insert, ids re-correlated to drafts.
- ``LinkReconciler``: bounded parallel claims, failures collected.
- ``ActivityNotifier``: detached audit writes with retries.
"""
