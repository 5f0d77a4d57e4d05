"""Tests for the GradebookService."""

import csv
import io

import pytest

from extensions import db
from models import (
    Course, Enrollment, AssignmentSubmission, GradeAuditLog, Rubric, RubricCriterion, RubricScore,
)
from services import (
    GradebookService,
    CourseNotFoundError,
    StudentNotFoundError,
    AssignmentNotFoundError,
    SubmissionNotFoundError,
    RubricNotConfiguredError,
    InvalidGradeDataError,
)

SCALE = [
    {'label': 'A', 'min_percentage': 90},
    {'label': 'B', 'min_percentage': 80},
    {'label': 'C', 'min_percentage': 70},
]


@pytest.fixture
def service(app):
    return GradebookService(db.session)


class TestCalculateStudentGrade:

    def test_flat_course(self, service, make_course, make_student, add_assignment, add_submission):
        course = make_course(scale=SCALE)
        student = make_student(course=course)
        first = add_assignment(course, max_points=100)
        second = add_assignment(course, max_points=50)
        add_submission(first, student, grade=80)
        add_submission(second, student, grade=50)

        result = service.calculate_student_grade(student.id, course.id)

        assert result.percentage == 86.7
        assert result.letter_grade == 'B'
        assert result.is_weighted is False

    def test_only_graded_submissions_count(self, service, make_course, make_student,
                                           add_assignment, add_submission):
        course = make_course()
        student = make_student(course=course)
        graded = add_assignment(course, max_points=10)
        pending = add_assignment(course, max_points=10)
        add_submission(graded, student, grade=6)
        # status still 'submitted' so the provisional grade is ignored
        add_submission(pending, student, grade=0, status='submitted')

        result = service.calculate_student_grade(student.id, course.id)

        assert result.percentage == 60.0
        assert result.letter_grade == 'N/A'

    def test_weighted_with_best_quiz_attempt(self, service, make_course, make_student, add_assignment,
                                             add_submission, add_quiz, add_attempt):
        course = make_course(weights={'Homework': 0.4, 'Exams': 0.6}, scale=SCALE)
        student = make_student(course=course)
        homework = add_assignment(course, max_points=20, grade_category='Homework')
        add_submission(homework, student, grade=20)
        quiz = add_quiz(course, question_points=(4, 6), grade_category='Exams')
        for points in (5, 9, 7):
            add_attempt(quiz, student, points)

        result = service.calculate_student_grade(student.id, course.id)

        # 0.4 * 100 + 0.6 * 90
        assert result.percentage == 94.0
        assert result.letter_grade == 'A'
        assert result.is_weighted is True

    def test_unpublished_quizzes_are_ignored(self, service, make_course, make_student,
                                             add_assignment, add_submission, add_quiz, add_attempt):
        course = make_course()
        student = make_student(course=course)
        assignment = add_assignment(course, max_points=10)
        add_submission(assignment, student, grade=10)
        draft = add_quiz(course, question_points=(10,), is_published=False)
        add_attempt(draft, student, 0)

        assert service.calculate_student_grade(student.id, course.id).percentage == 100.0

    def test_other_students_work_is_ignored(self, service, make_course, make_student,
                                            add_assignment, add_submission):
        course = make_course()
        student = make_student(course=course)
        classmate = make_student(first_name='Ben', course=course)
        assignment = add_assignment(course, max_points=10)
        add_submission(assignment, classmate, grade=10)

        result = service.calculate_student_grade(student.id, course.id)

        assert result.percentage == 0

    def test_missing_course(self, service, make_student):
        student = make_student()
        with pytest.raises(CourseNotFoundError):
            service.calculate_student_grade(student.id, 999)

    def test_missing_student(self, service, make_course):
        course = make_course()
        with pytest.raises(StudentNotFoundError):
            service.calculate_student_grade(999, course.id)

    def test_student_course_grades(self, service, make_course, make_student,
                                   add_assignment, add_submission):
        algebra = make_course(code='ALG-1', scale=SCALE)
        biology = make_course(code='BIO-1')
        student = make_student(course=algebra)
        db.session.add(Enrollment(student_id=student.id, course_id=biology.id))
        db.session.commit()
        add_submission(add_assignment(algebra, max_points=10), student, grade=9)

        grades = service.student_course_grades(student.id)

        assert [g['course_code'] for g in grades] == ['ALG-1', 'BIO-1']
        assert grades[0]['percentage'] == 90.0
        assert grades[0]['letter_grade'] == 'A'
        assert grades[1]['letter_grade'] == 'N/A'


class TestGradebook:

    def test_columns_rows_and_analytics(self, service, make_course, make_student, add_assignment,
                                        add_submission, add_quiz, add_attempt):
        course = make_course(scale=SCALE, code='ALG-101')
        ana = make_student(first_name='Ana', last_name='Reyes', course=course)
        ben = make_student(first_name='Ben', last_name='Okafor', course=course)
        essay = add_assignment(course, max_points=10, title='Essay')
        quiz = add_quiz(course, question_points=(5, 5), title='Quiz 1')
        add_submission(essay, ana, grade=9)
        add_submission(essay, ben, grade=None)
        add_attempt(quiz, ana, 6)
        add_attempt(quiz, ana, 8)
        add_attempt(quiz, ben, 7)

        data = service.build_gradebook(course.id)

        assert [(c['type'], c['title'], c['max_points']) for c in data['columns']] == [
            ('assignment', 'Essay', 10),
            ('quiz', 'Quiz 1', 10),
        ]
        rows = {row['student']['name']: row for row in data['rows']}

        ana_row = rows['Ana Reyes']
        assert ana_row['grades'][f'assignment-{essay.id}']['score'] == 9
        assert ana_row['grades'][f'quiz-{quiz.id}']['score'] == 8
        assert ana_row['summary'] == {'percentage': 85.0, 'letter_grade': 'B', 'is_weighted': False}

        ben_row = rows['Ben Okafor']
        assert ben_row['grades'][f'assignment-{essay.id}']['status'] == 'submitted'
        assert ben_row['summary']['percentage'] == 70.0

        assert data['analytics'] == {
            'total_students': 2,
            'course_average': 77.5,
            'grade_distribution': {'B': 1, 'C': 1},
        }

    def test_course_average_rounds_half_up(self, service, make_course, make_student,
                                           add_assignment, add_submission):
        course = make_course()
        ana = make_student(course=course)
        ben = make_student(first_name='Ben', course=course)
        exam = add_assignment(course, max_points=200)
        add_submission(exam, ana, grade=160)
        add_submission(exam, ben, grade=161)

        data = service.build_gradebook(course.id)

        # mean of 80.0 and 80.5 is 80.25
        assert data['analytics']['course_average'] == 80.3
        assert data['course']['enrolled_count'] == 2

    def test_missing_work_statuses(self, service, make_course, make_student, add_assignment, add_quiz):
        course = make_course()
        make_student(course=course)
        assignment = add_assignment(course)
        quiz = add_quiz(course)

        row = service.build_gradebook(course.id)['rows'][0]

        assert row['grades'][f'assignment-{assignment.id}'] == {'score': None, 'status': 'missing'}
        assert row['grades'][f'quiz-{quiz.id}'] == {'score': None, 'status': 'not_attempted'}

    def test_empty_course(self, service, make_course):
        data = service.build_gradebook(make_course().id)
        assert data['rows'] == []
        assert data['analytics']['course_average'] == 0

    def test_missing_course(self, service):
        with pytest.raises(CourseNotFoundError):
            service.build_gradebook(42)

    def test_csv_export(self, service, make_course, make_student, add_assignment, add_submission):
        course = make_course(scale=SCALE, code='ALG-101')
        ana = make_student(first_name='Ana', last_name='Reyes', course=course)
        make_student(first_name='Ben', last_name='Okafor', course=course)
        essay = add_assignment(course, max_points=10, title='Essay, part 1')
        add_submission(essay, ana, grade=9.5)

        filename, content = service.export_gradebook_csv(course.id)

        assert filename == 'gradebook-ALG-101.csv'
        rows = list(csv.reader(io.StringIO(content)))
        assert rows[0] == ['Student Name', 'Email', '[A] Essay, part 1', 'Percentage', 'Letter Grade']
        assert rows[1][0] == 'Ana Reyes'
        assert rows[1][2:] == ['9.5', '95.0', 'A']
        assert rows[2][2:] == ['', '0.0', 'C']


class TestUpdateGrades:

    def test_creates_and_audits_new_grade(self, service, make_user, make_course, make_student, add_assignment):
        teacher = make_user('teacher')
        course = make_course(instructor=teacher)
        student = make_student(course=course)
        assignment = add_assignment(course, max_points=100)

        changes = service.update_grades(
            course.id, {str(student.id): {str(assignment.id): 88}},
            changed_by=teacher.id, ip_address='10.0.0.1', user_agent='pytest',
        )

        assert changes == 1
        submission = AssignmentSubmission.query.filter_by(student_id=student.id).one()
        assert submission.grade == 88
        assert submission.status == 'graded'
        assert submission.graded_by == teacher.id
        log = GradeAuditLog.query.one()
        assert (log.old_value, log.new_value) == (None, '88')
        assert (log.ip_address, log.user_agent) == ('10.0.0.1', 'pytest')
        assert log.course_id == course.id

    def test_changed_grade_logs_old_value(self, service, make_user, make_course, make_student,
                                          add_assignment, add_submission):
        teacher = make_user('teacher')
        course = make_course(instructor=teacher)
        student = make_student(course=course)
        assignment = add_assignment(course)
        add_submission(assignment, student, grade=70)

        service.update_grades(course.id, {student.id: {assignment.id: 72.5}}, changed_by=teacher.id)

        log = GradeAuditLog.query.one()
        assert (log.old_value, log.new_value) == ('70', '72.5')

    def test_unchanged_and_cleared_missing_are_noops(self, service, make_user, make_course, make_student,
                                                     add_assignment, add_submission):
        teacher = make_user('teacher')
        course = make_course(instructor=teacher)
        student = make_student(course=course)
        graded = add_assignment(course)
        never_submitted = add_assignment(course)
        add_submission(graded, student, grade=70)

        changes = service.update_grades(
            course.id, {student.id: {graded.id: 70, never_submitted.id: None}}, changed_by=teacher.id,
        )

        assert changes == 0
        assert GradeAuditLog.query.count() == 0
        assert AssignmentSubmission.query.count() == 1

    def test_clearing_a_grade(self, service, make_user, make_course, make_student,
                              add_assignment, add_submission):
        teacher = make_user('teacher')
        course = make_course(instructor=teacher)
        student = make_student(course=course)
        assignment = add_assignment(course)
        submission = add_submission(assignment, student, grade=55)

        service.update_grades(course.id, {student.id: {assignment.id: None}}, changed_by=teacher.id)

        assert db.session.get(AssignmentSubmission, submission.id).grade is None
        assert GradeAuditLog.query.one().new_value is None

    @pytest.mark.parametrize('grade', [-1, 101, 'A', True, float('nan'), float('inf')])
    def test_invalid_grade_writes_nothing(self, service, make_user, make_course, make_student,
                                          add_assignment, grade):
        teacher = make_user('teacher')
        course = make_course(instructor=teacher)
        student = make_student(course=course)
        first = add_assignment(course)
        second = add_assignment(course)

        with pytest.raises(InvalidGradeDataError):
            service.update_grades(course.id, {student.id: {first.id: 90, second.id: grade}},
                                  changed_by=teacher.id)

        assert AssignmentSubmission.query.count() == 0
        assert GradeAuditLog.query.count() == 0

    def test_assignment_from_another_course(self, service, make_user, make_course, make_student,
                                            add_assignment):
        teacher = make_user('teacher')
        course = make_course(instructor=teacher)
        other = make_course()
        student = make_student(course=course)
        foreign = add_assignment(other)

        with pytest.raises(InvalidGradeDataError, match='does not belong'):
            service.update_grades(course.id, {student.id: {foreign.id: 50}}, changed_by=teacher.id)

    @pytest.mark.parametrize('payload', [None, {}, [], {'x': {}}, {'999': {'1': 5}}])
    def test_malformed_payload(self, service, make_course, payload):
        course = make_course()
        with pytest.raises(InvalidGradeDataError):
            service.update_grades(course.id, payload, changed_by=None)

    def test_grade_change_is_reflected_in_course_grade(self, service, make_user, make_course, make_student,
                                                       add_assignment):
        teacher = make_user('teacher')
        course = make_course(instructor=teacher, scale=SCALE)
        student = make_student(course=course)
        assignment = add_assignment(course, max_points=50)

        service.update_grades(course.id, {student.id: {assignment.id: 40}}, changed_by=teacher.id)

        result = service.calculate_student_grade(student.id, course.id)
        assert result.percentage == 80.0
        assert result.letter_grade == 'B'


@pytest.fixture
def rubric_assignment(make_course, add_assignment):
    rubric = Rubric(title='Essay rubric')
    rubric.criteria = [
        RubricCriterion(title='Thesis', max_points=10, position=0),
        RubricCriterion(title='Evidence', max_points=5, position=1),
    ]
    db.session.add(rubric)
    db.session.commit()
    assignment = add_assignment(make_course(), max_points=15)
    assignment.rubric_id = rubric.id
    db.session.commit()
    return assignment


class TestRubricGrade:

    def test_scores_are_clamped_and_totalled(self, service, rubric_assignment, make_student, add_submission):
        submission = add_submission(rubric_assignment, make_student())
        thesis, evidence = rubric_assignment.rubric.criteria

        total = service.submit_rubric_grade(rubric_assignment.id, submission.id, [
            {'criterion_id': thesis.id, 'score': 12, 'comment': 'Strong'},
            {'criterion_id': evidence.id, 'score': -3},
            {'criterion_id': 999, 'score': 50},
        ], feedback='Good work')

        assert total == 10
        submission = db.session.get(AssignmentSubmission, submission.id)
        assert submission.grade == 10
        assert submission.status == 'graded'
        assert submission.feedback == 'Good work'
        scores = {s.criterion_id: s for s in RubricScore.query.all()}
        assert scores[thesis.id].score == 10
        assert scores[thesis.id].comment == 'Strong'
        assert scores[evidence.id].score == 0

    def test_regrading_updates_existing_scores(self, service, rubric_assignment, make_student, add_submission):
        submission = add_submission(rubric_assignment, make_student())
        thesis = rubric_assignment.rubric.criteria[0]

        service.submit_rubric_grade(rubric_assignment.id, submission.id, [{'criterion_id': thesis.id, 'score': 4}])
        service.submit_rubric_grade(rubric_assignment.id, submission.id, [{'criterion_id': thesis.id, 'score': 7}])

        assert RubricScore.query.count() == 1
        assert RubricScore.query.one().score == 7

    def test_submission_must_match_assignment(self, service, rubric_assignment, make_student,
                                              add_assignment, add_submission):
        other = add_assignment(rubric_assignment.course)
        submission = add_submission(other, make_student())

        with pytest.raises(SubmissionNotFoundError):
            service.submit_rubric_grade(rubric_assignment.id, submission.id, [{'criterion_id': 1, 'score': 1}])

    def test_assignment_without_rubric(self, service, make_course, make_student, add_assignment, add_submission):
        assignment = add_assignment(make_course())
        submission = add_submission(assignment, make_student())

        with pytest.raises(RubricNotConfiguredError):
            service.submit_rubric_grade(assignment.id, submission.id, [{'criterion_id': 1, 'score': 1}])

    @pytest.mark.parametrize('score', ['nan', float('inf')])
    def test_non_finite_score_rejected(self, service, rubric_assignment, make_student, add_submission, score):
        submission = add_submission(rubric_assignment, make_student())
        thesis = rubric_assignment.rubric.criteria[0]

        with pytest.raises(InvalidGradeDataError):
            service.submit_rubric_grade(rubric_assignment.id, submission.id,
                                        [{'criterion_id': thesis.id, 'score': score}])

        assert RubricScore.query.count() == 0
        assert db.session.get(AssignmentSubmission, submission.id).grade is None

    def test_scores_required(self, service, rubric_assignment):
        with pytest.raises(InvalidGradeDataError):
            service.submit_rubric_grade(rubric_assignment.id, 1, [])


class TestGradingSettingsAndCreation:

    def test_update_settings(self, service, make_course):
        course = make_course()
        settings = service.update_grading_settings(
            course.id, weights={'Homework': 0.5, 'Exams': 0.5}, scale=SCALE,
        )
        assert settings['grading_weights'] == {'Homework': 0.5, 'Exams': 0.5}
        assert settings['grading_scale'][0] == {'label': 'A', 'min_percentage': 90}

    def test_weights_cannot_orphan_existing_work(self, service, make_course, add_assignment):
        course = make_course()
        add_assignment(course, grade_category='Labs')

        with pytest.raises(ValueError, match='Labs'):
            service.update_grading_settings(course.id, weights={'Homework': 1.0})

        assert db.session.get(Course, course.id).get_grading_weights() is None

    def test_create_assignment_resolves_category(self, service, make_course):
        course = make_course(weights={'Homework': 0.4, 'Exams': 0.6})
        assignment = service.create_assignment(course.id, {
            'title': 'Problem set 1', 'max_points': 20, 'grade_category': 'homework',
        })
        assert assignment.grade_category == 'Homework'
        assert assignment.max_points == 20

    def test_create_assignment_rejects_unknown_category(self, service, make_course):
        course = make_course(weights={'Homework': 1.0})
        with pytest.raises(ValueError, match='Unknown grade category'):
            service.create_assignment(course.id, {'title': 'PS', 'grade_category': 'Homewrok'})

    def test_create_quiz_with_questions(self, service, make_course):
        course = make_course(weights={'Exams': 1.0})
        quiz = service.create_quiz(course.id, {
            'title': 'Unit quiz',
            'grade_category': 'exams',
            'is_published': True,
            'questions': [{'prompt': '2 + 2?', 'points': 2}, {'prompt': 'Solve x', 'points': 3}],
        })
        assert quiz.grade_category == 'Exams'
        assert quiz.get_max_points() == 5

    def test_create_in_missing_course(self, service):
        with pytest.raises(CourseNotFoundError):
            service.create_assignment(5, {'title': 'x'})

    @pytest.mark.parametrize('max_points', [float('nan'), float('inf'), 0, True])
    def test_create_assignment_rejects_bad_points(self, service, make_course, max_points):
        course = make_course()
        with pytest.raises(ValueError, match='Max points'):
            service.create_assignment(course.id, {'title': 'PS', 'max_points': max_points})
        assert course.assignments.count() == 0

    @pytest.mark.parametrize('points', [float('nan'), float('inf'), -1])
    def test_create_quiz_rejects_bad_question_points(self, service, make_course, points):
        course = make_course()
        with pytest.raises(ValueError, match='Question points'):
            service.create_quiz(course.id, {'title': 'Quiz', 'questions': [{'prompt': 'Q', 'points': points}]})
        assert course.quizzes.count() == 0

    def test_get_assignment(self, service, make_course, add_assignment):
        assignment = add_assignment(make_course())
        assert service.get_assignment(assignment.id) is assignment
        with pytest.raises(AssignmentNotFoundError):
            service.get_assignment(999)
